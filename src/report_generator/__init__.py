"""
This package contains the LLM-based experiment report generator.

Its purpose is to ingest process-simulation experiment results, aggregate them
into impact rankings and scenario comparisons, use a large language model to
write narrative insights, and compose everything with rendered charts into a
paginated PDF report.
"""
