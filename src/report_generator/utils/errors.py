"""
Error taxonomy for the report generation pipeline.

Every stage raises a subclass of `ReportGenerationError`, so the coordinator can
catch them once at its boundary and turn them into a user-facing status message.
"""

from typing import Optional


class ReportGenerationError(Exception):
    """Base class for all errors raised while producing a report."""


class ValidationError(ReportGenerationError):
    """Input or preconditions are missing or malformed."""


class TransportError(ReportGenerationError):
    """The narrative-generation service was unreachable or rejected the call."""

    def __init__(self, message: str, provider_message: Optional[str] = None):
        super().__init__(message)
        self.provider_message = provider_message


class EmptyResponseError(ReportGenerationError):
    """The narrative-generation service answered with blank text."""


class ParseError(ReportGenerationError):
    """The narrative response did not follow the section-marker contract."""

    def __init__(self, message: str, section: Optional[str] = None):
        super().__init__(message)
        self.section = section


class RenderError(ReportGenerationError):
    """A chart could not be rendered to an image."""


class ComposeError(ReportGenerationError):
    """A layout invariant was violated while composing the document."""


class RunInProgressError(ReportGenerationError):
    """A report run was started while another one had not finished."""
