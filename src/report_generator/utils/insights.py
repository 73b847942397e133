"""
This module turns aggregated experiment data into narrative report sections.

It is responsible for:
1.  **Prompt Construction**: A deterministic prompt embedding the full
    experiment data, an aggregated digest, formatting rules, and one
    `[SECTION] ... [/SECTION]` marker pair per requested section.
2.  **LLM Invocation**: A `NarrativeService` boundary whose LangChain
    implementation calls Google Gemini (or a local Ollama model).
3.  **Response Parsing**: Locating each marker pair in the response and
    failing with a precise `ParseError` when a section cannot be found.

Sections can be requested in a single round trip or as one concurrent request
per section; in both modes a missing section fails the whole call.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from langchain_core.messages import HumanMessage
from langchain_core.prompts import PromptTemplate

from .aggregation import combined_impact_ranking, kpi_summary, top_bottom_scenarios
from .constants import DEFAULT_DRIVER_TABLE_LIMIT
from .data_model import ExperimentData, GeneratedInsights
from .errors import EmptyResponseError, ParseError, TransportError

logger = logging.getLogger(__name__)

# Ollama is an optional dependency, so we handle its import gracefully.
try:
    from langchain_ollama import ChatOllama
except ImportError:
    ChatOllama = None

INSIGHT_MODES = ("single", "per_section")


class InsightSection(Enum):
    """The four narrative sections of the report, keyed by their marker name."""

    EXECUTIVE_SUMMARY = (
        "executive_summary",
        "Executive Summary",
        "Strategic overview of the optimization results and key takeaways",
    )
    VARIABLE_ANALYSIS = (
        "variable_analysis",
        "Variable Analysis",
        "Combined insights on top variables, their impacts, and tuning recommendations",
    )
    SCENARIO_COMPARISON = (
        "scenario_comparison",
        "Scenario Comparison",
        "Analysis of what differentiates best vs worst performing scenarios",
    )
    PERFORMANCE_DRIVERS = (
        "performance_drivers",
        "Performance Drivers",
        "Analyze variable configurations in top vs bottom scenarios and explain "
        "what drives performance differences",
    )

    def __init__(self, field_name: str, title: str, task: str):
        self.field_name = field_name
        self.title = title
        self.task = task

    @property
    def start_marker(self) -> str:
        return f"[{self.name}]"

    @property
    def end_marker(self) -> str:
        return f"[/{self.name}]"


# =============================================================================
# PROMPT CONSTRUCTION
# =============================================================================
PROMPT_TEMPLATE = """You are an expert process optimization engineer. Analyze the following experiment results and provide actionable insights.

# EXPERIMENT DATA (JSON)

```json
{experiment_json}
```

# AGGREGATED DIGEST

{digest}

# YOUR TASK

Based on the complete data above, provide insights for a technical PDF report in {section_count} section(s):

{task_list}

# INSTRUCTIONS

- Explain key findings and their implications for process optimization
- Provide actionable insights based on the data
- Keep each section concise (1 paragraph, 3-5 sentences)
- Use professional engineering language
- Do not use bullet points in the paragraphs

# OUTPUT FORMAT

Use these exact section markers and reproduce them verbatim:

{marker_blocks}

Begin your analysis now:"""


def _build_digest(data: ExperimentData) -> str:
    """Summarizes the aggregated numbers the narrative should rely on."""
    summary = kpi_summary(data)
    lines = [
        f"KPI: {data.kpi_name}",
        f"Total Scenarios Tested: {len(data.simulated_scenarios)}",
        f"KPI Range: {summary.minimum:.2f} to {summary.maximum:.2f} "
        f"(mean {summary.mean:.2f}, std {summary.std:.2f})",
    ]
    unscored = len(data.simulated_scenarios) - summary.count
    if unscored:
        lines.append(f"Scenarios Without a KPI Value (excluded): {unscored}")

    partition = top_bottom_scenarios(data, 1)
    if partition.top:
        best, worst = partition.top[0], partition.bottom[0]
        lines.append(f"Best Scenario: {best.scenario} ({best.kpi_value:.2f})")
        lines.append(f"Worst Scenario: {worst.scenario} ({worst.kpi_value:.2f})")

    ranking = combined_impact_ranking(data)[:DEFAULT_DRIVER_TABLE_LIMIT]
    if ranking:
        lines.append("Highest Impact Variables:")
        lines.extend(
            f"- {item.key}: {item.weightage:.2f}% ({item.category})" for item in ranking
        )
    return "\n".join(lines)


def build_prompt(
    data: ExperimentData, sections: Optional[Iterable[InsightSection]] = None
) -> str:
    """
    Builds the narrative-generation prompt for the requested sections.

    The prompt is a pure function of its inputs, so identical data always
    produces an identical prompt.

    Args:
        data: The experiment data to analyze.
        sections: The sections to request; all four when omitted.

    Returns:
        The complete prompt string.
    """
    selected: List[InsightSection] = list(sections or InsightSection)
    task_list = "\n".join(
        f"{i}. **{section.title}** - {section.task}"
        for i, section in enumerate(selected, start=1)
    )
    marker_blocks = "\n\n".join(
        f"{section.start_marker}\nYour {section.title.lower()} paragraph here.\n"
        f"{section.end_marker}"
        for section in selected
    )
    prompt_template = PromptTemplate.from_template(PROMPT_TEMPLATE)
    return prompt_template.format(
        experiment_json=json.dumps(data.to_json_dict(), indent=2),
        digest=_build_digest(data),
        section_count=len(selected),
        task_list=task_list,
        marker_blocks=marker_blocks,
    )


# =============================================================================
# RESPONSE PARSING
# =============================================================================
def extract_section(text: str, section: InsightSection) -> str:
    """
    Extracts the trimmed content between a section's opening and closing markers.

    Raises:
        ParseError: If either marker is absent or the section is empty.
    """
    start_index = text.find(section.start_marker)
    if start_index == -1:
        raise ParseError(
            f"Section {section.name} not found in response: "
            f"missing opening marker {section.start_marker}",
            section=section.name,
        )
    content_start = start_index + len(section.start_marker)
    end_index = text.find(section.end_marker, content_start)
    if end_index == -1:
        raise ParseError(
            f"Section {section.name} not found in response: "
            f"missing closing marker {section.end_marker}",
            section=section.name,
        )
    content = text[content_start:end_index].strip()
    if not content:
        raise ParseError(f"Section {section.name} is empty", section=section.name)
    return content


def parse_insights(text: str) -> GeneratedInsights:
    """
    Parses a four-section markered response into a GeneratedInsights record.

    Raises:
        EmptyResponseError: If the response is blank.
        ParseError: If any of the four sections cannot be extracted.
    """
    if not text or not text.strip():
        raise EmptyResponseError("Narrative service returned an empty response")
    fields = {section.field_name: extract_section(text, section) for section in InsightSection}
    return GeneratedInsights(**fields)


# =============================================================================
# NARRATIVE SERVICE BOUNDARY
# =============================================================================
class NarrativeService(ABC):
    """Opaque text-generation service: a credential and a prompt in, text out."""

    @abstractmethod
    async def generate(self, credentials: str, prompt: str) -> str:
        """Returns the generated text for `prompt`."""


def _message_text(content: Any) -> str:
    """Flattens LangChain message content (a string or a list of blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


class LangChainNarrativeService(NarrativeService):
    """
    Calls a chat model through LangChain.

    Attributes:
        provider (str): 'gemini' or 'ollama'.
        model_name (str): The model to invoke.
        base_url (Optional[str]): The Ollama server URL, if not the default.
    """

    def __init__(self, provider: str, model_name: Optional[str], base_url: Optional[str] = None):
        self.provider = provider.lower()
        self.model_name = model_name
        self.base_url = base_url

    def _get_llm_instance(self, credentials: str):
        """
        Initializes the configured chat model.

        Raises:
            ValueError: If the provider is invalid or no model name is set.
            ImportError: If Ollama is selected but `langchain_ollama` is missing.
        """
        if self.provider == "gemini":
            # Imported lazily so Ollama-only installs do not need the Google stack.
            from langchain_google_genai import ChatGoogleGenerativeAI

            logger.info(f"Initializing LangChain Gemini model: {self.model_name}")
            return ChatGoogleGenerativeAI(model=self.model_name, google_api_key=credentials)

        elif self.provider == "ollama":
            if ChatOllama is None:
                raise ImportError(
                    "'langchain_ollama' library not installed. Cannot use Ollama provider."
                )
            if not self.model_name:
                raise ValueError("Ollama provider selected, but no model name is set.")
            logger.info(f"Initializing LangChain Ollama model: {self.model_name}")
            init_kwargs: Dict[str, Any] = {"model": self.model_name}
            if self.base_url:
                init_kwargs["base_url"] = self.base_url
                logger.info(f"  Connecting to Ollama at: {self.base_url}")
            return ChatOllama(**init_kwargs)

        else:
            raise ValueError(f"Invalid LLM provider in config: '{self.provider}'")

    @staticmethod
    def _log_token_usage(response_message: Any) -> None:
        usage_data = getattr(response_message, "usage_metadata", None)
        if not usage_data:
            return
        input_tokens = usage_data.get("input_tokens", 0)
        output_tokens = usage_data.get("output_tokens", 0)
        total_tokens = usage_data.get("total_tokens") or input_tokens + output_tokens
        logger.info(f"  Token usage - input: {input_tokens}, output: {output_tokens}, total: {total_tokens}")

    async def generate(self, credentials: str, prompt: str) -> str:
        try:
            llm = self._get_llm_instance(credentials)
            response_message = await llm.ainvoke([HumanMessage(content=prompt)])
        except Exception as e:
            logger.error(f"Narrative service request failed: {e}")
            raise TransportError(
                f"Failed to generate insights: {e}", provider_message=str(e)
            ) from e

        self._log_token_usage(response_message)
        text = _message_text(getattr(response_message, "content", ""))
        if not text.strip():
            raise EmptyResponseError(f"{self.provider.capitalize()} API returned empty response")
        return text


# =============================================================================
# ORCHESTRATION
# =============================================================================
class InsightOrchestrator:
    """
    Requests the four narrative sections from a NarrativeService.

    In 'single' mode one prompt requests all sections; in 'per_section' mode
    one prompt per section is issued concurrently. Errors are never retried.
    """

    def __init__(self, service: NarrativeService, mode: str = "single"):
        if mode not in INSIGHT_MODES:
            raise ValueError(f"Invalid insights mode '{mode}'. Expected one of {INSIGHT_MODES}.")
        self.service = service
        self.mode = mode

    async def _request_section(
        self, data: ExperimentData, credentials: str, section: InsightSection
    ) -> str:
        text = await self.service.generate(credentials, build_prompt(data, [section]))
        if not text or not text.strip():
            raise EmptyResponseError(
                f"Narrative service returned an empty response for {section.name}"
            )
        return extract_section(text, section)

    async def request_narrative_insights(
        self, data: ExperimentData, credentials: str
    ) -> GeneratedInsights:
        """
        Generates all four narrative sections for the given data.

        Raises:
            TransportError: If the service call fails.
            EmptyResponseError: If the service returns blank text.
            ParseError: If any section is missing from the response.
        """
        logger.info(f"--- Requesting narrative insights ({self.mode}) ---")
        if self.mode == "single":
            text = await self.service.generate(credentials, build_prompt(data))
            insights = parse_insights(text)
        else:
            sections = list(InsightSection)
            tasks = [
                asyncio.ensure_future(self._request_section(data, credentials, s))
                for s in sections
            ]
            try:
                contents = await asyncio.gather(*tasks)
            except Exception:
                # The first failure fails the call; outstanding requests are cancelled.
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            insights = GeneratedInsights(
                **{s.field_name: content for s, content in zip(sections, contents)}
            )
        logger.info(f"--- Generated Insights (Preview) ---\n{insights.executive_summary[:300]}...")
        return insights
