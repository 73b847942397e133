"""
This module is the entry point of the experiment report generator.

It defines the `ReportGenerator` class, which coordinates one report run over
uploaded process-simulation results. The key responsibilities of this module are:

1.  **Configuration Loading**: Loads and validates settings from a dedicated
    YAML file using Pydantic models.
2.  **Data Ingestion**: Loads experiment JSON from an upload, a file, or the
    bundled mock fixture, keeping the previous data if the new input is invalid.
3.  **Run Coordination**: Validates inputs, requests narrative insights from
    the configured LLM, renders the charts, composes the PDF, and saves it,
    moving through an explicit state machine and reporting status on each step.
4.  **Serving**: Exposes upload, generation and download endpoints through a
    local FastAPI web server.

Execution:
    To generate a report from a results file:
    $ python -m src.report_generator.main --input results.json

    To generate a report from the mock data and serve the web interface:
    $ python -m src.report_generator.main --mock --serve
"""

# =============================================================================
# HEADER (Imports, Constants, Logger)
# =============================================================================
import argparse
import asyncio
import logging
import os
from datetime import date, datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Literal, Optional

import uvicorn
import yaml
from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .. import constants
from .utils.aggregation import combined_impact_ranking, kpi_summary
from .utils.charts import ChartSize, render_report_charts
from .utils.constants import (
    DEFAULT_DRIVER_TABLE_LIMIT,
    DEFAULT_QUINTILE_FRACTION,
    PAGE_MARGIN_MM,
)
from .utils.data_model import (
    ChartImages,
    ExperimentData,
    load_experiment_file,
    parse_experiment_json,
)
from .utils.document import REPORT_TITLE, compose_report
from .utils.errors import ReportGenerationError, RunInProgressError, ValidationError
from .utils.insights import InsightOrchestrator, LangChainNarrativeService, NarrativeService

# --- Logger ---
logger = logging.getLogger(__name__)
# Silence noisy third-party loggers to keep the output clean.
logging.getLogger("kaleido").setLevel(logging.WARNING)
logging.getLogger("choreographer").setLevel(logging.WARNING)
logging.getLogger("absl").setLevel(logging.ERROR)
logging.getLogger("google.api_core").setLevel(logging.ERROR)


# --- Application Configuration ---
DEFAULT_REPORT_CONFIG_PATH = os.path.join(
    constants.PROJECT_ROOT, constants.CONFIG_DIR, constants.REPORT_GEN_CONFIG_FILENAME
)

# --- Default LLM Configuration (used if not in config file) ---
GEMINI_API_KEY = os.environ.get("GOOGLE_API_KEY")
GEMINI_DEFAULT_MODEL_NAME = "gemini-2.5-flash"
OLLAMA_BASE_URL = os.environ.get("OLLAMA_BASE_URL")


# =============================================================================
# CONFIGURATION MODELS (Pydantic)
# =============================================================================
class GeminiSettings(BaseModel):
    """Settings specific to the Google Gemini provider."""

    model_name: str = GEMINI_DEFAULT_MODEL_NAME


class OllamaSettings(BaseModel):
    """Settings specific to a local Ollama provider."""

    model_name: Optional[str] = None
    base_url: Optional[str] = OLLAMA_BASE_URL


class LLMConfig(BaseModel):
    """Configuration for the LLM provider and its specific settings."""

    provider: str = Field(
        default="gemini", description="The LLM provider to use ('gemini' or 'ollama')."
    )
    gemini_settings: GeminiSettings = Field(default_factory=GeminiSettings)
    ollama_settings: OllamaSettings = Field(default_factory=OllamaSettings)


class InsightsConfig(BaseModel):
    """How the narrative sections are requested from the LLM."""

    mode: Literal["single", "per_section"] = Field(
        default="single",
        description="'single' for one request, 'per_section' for four concurrent requests.",
    )


class ChartSizeConfig(BaseModel):
    width: int = Field(default=800, gt=0)
    height: int = Field(default=400, gt=0)


class ChartsConfig(BaseModel):
    """Pixel sizes of the off-screen chart renders."""

    bar_chart: ChartSizeConfig = Field(
        default_factory=lambda: ChartSizeConfig(width=800, height=600)
    )
    line_chart: ChartSizeConfig = Field(default_factory=ChartSizeConfig)
    comparison_chart: ChartSizeConfig = Field(
        default_factory=lambda: ChartSizeConfig(width=800, height=600)
    )

    def as_sizes(self) -> Dict[str, ChartSize]:
        return {
            name: ChartSize(size.width, size.height)
            for name, size in (
                ("bar_chart", self.bar_chart),
                ("line_chart", self.line_chart),
                ("comparison_chart", self.comparison_chart),
            )
        }


class DocumentConfig(BaseModel):
    """Page layout settings of the composed PDF."""

    title: str = REPORT_TITLE
    # Wider margins would leave the line chart wider than the printable area.
    margin_mm: float = Field(default=PAGE_MARGIN_MM, ge=5, le=25)


class AnalysisConfig(BaseModel):
    """Parameters of the aggregation shown in the report."""

    quintile_fraction: float = Field(default=DEFAULT_QUINTILE_FRACTION, gt=0, le=1)
    driver_table_limit: int = Field(default=DEFAULT_DRIVER_TABLE_LIMIT, gt=0)
    strict_impact_keys: bool = Field(
        default=False,
        description="Reject data whose setpoint and condition impacts share a key.",
    )


class ReportGeneratorConfig(BaseModel):
    """The main configuration model that aggregates all other settings."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    insights: InsightsConfig = Field(default_factory=InsightsConfig)
    charts: ChartsConfig = Field(default_factory=ChartsConfig)
    document: DocumentConfig = Field(default_factory=DocumentConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================
def load_report_config(
    config_path: str = DEFAULT_REPORT_CONFIG_PATH,
) -> ReportGeneratorConfig:
    """
    Loads and validates the report generator configuration from a YAML file.

    Args:
        config_path: The path to the YAML configuration file.

    Returns:
        A validated ReportGeneratorConfig object.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the config file is empty.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If the file content does not match the model.
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f)
            if not config_data:
                raise ValueError("Configuration file is empty.")
        return ReportGeneratorConfig(**config_data)
    except FileNotFoundError:
        logger.error(f"Report configuration file not found at {config_path}.")
        raise
    except yaml.YAMLError as e:
        logger.error(
            f"Error parsing report configuration YAML file '{config_path}': {e}"
        )
        raise
    except PydanticValidationError as e:
        logger.error(f"Error validating configuration from '{config_path}':\n{e}")
        raise


def build_narrative_service(config: ReportGeneratorConfig) -> NarrativeService:
    """Creates the LangChain narrative service for the configured provider."""
    provider = config.llm.provider.lower()
    if provider == "ollama":
        return LangChainNarrativeService(
            provider,
            config.llm.ollama_settings.model_name,
            base_url=config.llm.ollama_settings.base_url,
        )
    return LangChainNarrativeService(provider, config.llm.gemini_settings.model_name)


def data_summary(data: ExperimentData) -> Dict[str, Any]:
    """Summarizes loaded data for status displays."""
    summary = kpi_summary(data)
    return {
        "total_scenarios": len(data.simulated_scenarios),
        "scored_scenarios": summary.count,
        "top_variables": len(data.top_variables),
        "kpi": data.kpi_name,
        "kpi_range": [round(summary.minimum, 2), round(summary.maximum, 2)],
    }


def report_filename(now: Optional[datetime] = None) -> str:
    """Builds the report filename from an ISO-8601 timestamp, e.g. 2026-10-19T14-03-22."""
    timestamp = (now or datetime.now()).isoformat(timespec="seconds").replace(":", "-")
    return f"{constants.REPORT_FILENAME_PREFIX}-{timestamp}.pdf"


# =============================================================================
# REPORT COORDINATOR
# =============================================================================
class ReportState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    AGGREGATING_INSIGHTS = "aggregating_insights"
    RENDERING_CHARTS = "rendering_charts"
    COMPOSING_DOCUMENT = "composing_document"
    DONE = "done"
    FAILED = "failed"


RESTARTABLE_STATES = (ReportState.IDLE, ReportState.DONE, ReportState.FAILED)

ChartRenderer = Callable[[ExperimentData, Dict[str, ChartSize]], Awaitable[ChartImages]]


class ReportGenerator:
    """
    Coordinates one report run at a time over the loaded experiment data.

    The run moves through `ReportState` in a fixed order. Any error moves it to
    FAILED with the error kept in `last_error`; nothing is written to disk
    unless the document was fully composed.

    Attributes:
        config (ReportGeneratorConfig): The validated configuration object.
        output_dir (str): The directory where finished reports are saved.
        data (Optional[ExperimentData]): The currently loaded experiment data.
        state (ReportState): The state of the current or last run.
        status (str): A user-facing description of the current state.
    """

    def __init__(
        self,
        config: ReportGeneratorConfig,
        output_dir: str,
        narrative_service: Optional[NarrativeService] = None,
        chart_renderer: Optional[ChartRenderer] = None,
        status_callback: Optional[Callable[[ReportState, str], None]] = None,
    ):
        self.config = config
        self.output_dir = output_dir
        self.narrative_service = narrative_service or build_narrative_service(config)
        self.chart_renderer: ChartRenderer = chart_renderer or render_report_charts
        self.status_callback = status_callback
        self.data: Optional[ExperimentData] = None
        self.state = ReportState.IDLE
        self.status = ""
        self.last_error: Optional[Exception] = None
        self.last_report_path: Optional[str] = None

    # -------------- data loading -------------------------------------------

    def load_data_from_text(self, text: str) -> ExperimentData:
        """Parses uploaded JSON; the previous data is kept if parsing fails."""
        data = parse_experiment_json(text)
        self.data = data
        self.status = "JSON file loaded successfully"
        return data

    def load_data_from_file(self, filepath: str) -> ExperimentData:
        data = load_experiment_file(filepath)
        self.data = data
        self.status = f"Loaded experiment data from {filepath}"
        return data

    def load_mock_data(self) -> ExperimentData:
        data = load_experiment_file(constants.MOCK_DATA_PATH)
        self.data = data
        self.status = "Mock data loaded successfully"
        return data

    # -------------- state machine ------------------------------------------

    def _transition(self, state: ReportState, status: str) -> None:
        self.state = state
        self.status = status
        logger.info(f"[{state.value}] {status}")
        if self.status_callback:
            self.status_callback(state, status)

    def _validate(self, data: Optional[ExperimentData], credentials: Optional[str]) -> ExperimentData:
        if not credentials or not credentials.strip():
            raise ValidationError("Please enter your Gemini API key")
        if data is None:
            raise ValidationError("Please load JSON data first")
        if not data.simulated_scenarios:
            raise ValidationError("Experiment data contains no scenarios")
        combined_impact_ranking(data, strict=self.config.analysis.strict_impact_keys)
        return data

    def _save_report(self, pdf_bytes: bytes) -> str:
        os.makedirs(self.output_dir, exist_ok=True)
        report_path = os.path.join(self.output_dir, report_filename())
        with open(report_path, "wb") as f:
            f.write(pdf_bytes)
        logger.info(f"Report saved to: {report_path}")
        return report_path

    async def generate_report(
        self, credentials: Optional[str], data: Optional[ExperimentData] = None
    ) -> str:
        """
        Runs the full pipeline and saves the PDF report.

        Args:
            credentials: The API key of the narrative-generation service.
            data: The experiment data to report on; the loaded data if omitted.

        Returns:
            The path of the saved PDF report.

        Raises:
            RunInProgressError: If a previous run has not reached DONE or FAILED.
            ReportGenerationError: Any error from a pipeline stage, after the
                run has been moved to FAILED.
        """
        if self.state not in RESTARTABLE_STATES:
            raise RunInProgressError(
                f"A report run is already in progress (state: {self.state.value})"
            )
        self.last_error = None
        run_data = data if data is not None else self.data

        try:
            self._transition(ReportState.VALIDATING, "Validating inputs...")
            run_data = self._validate(run_data, credentials)

            self._transition(ReportState.AGGREGATING_INSIGHTS, "Analyzing data with the LLM...")
            orchestrator = InsightOrchestrator(self.narrative_service, self.config.insights.mode)
            insights = await orchestrator.request_narrative_insights(run_data, credentials)

            self._transition(ReportState.RENDERING_CHARTS, "Generating charts...")
            charts = await self.chart_renderer(run_data, self.config.charts.as_sizes())

            self._transition(ReportState.COMPOSING_DOCUMENT, "Creating PDF report...")
            pdf_bytes = compose_report(
                run_data,
                insights,
                charts,
                generated_on=date.today(),
                fraction=self.config.analysis.quintile_fraction,
                driver_limit=self.config.analysis.driver_table_limit,
                margin=self.config.document.margin_mm,
                title=self.config.document.title,
            )
            report_path = self._save_report(pdf_bytes)
        except Exception as e:
            self.last_error = e
            if isinstance(e, ReportGenerationError):
                logger.error(f"Report generation failed: {e}")
            else:
                logger.critical(f"Unexpected error during report generation: {e}", exc_info=True)
            self._transition(ReportState.FAILED, f"Error: {e}")
            raise

        self.last_report_path = report_path
        self._transition(ReportState.DONE, "Report generated successfully!")
        return report_path


# =============================================================================
# WEB SERVER LOGIC (FastAPI)
# =============================================================================
class GenerateRequest(BaseModel):
    api_key: str = ""


def create_fastapi_app(state: Dict) -> FastAPI:
    """
    Creates and configures the FastAPI application, injecting state.

    Args:
        state: A dictionary holding application state (the generator instance).

    Returns:
        A configured FastAPI application instance.
    """
    app = FastAPI()

    def _generator() -> ReportGenerator:
        return state["generator"]

    @app.get("/", response_class=HTMLResponse)
    async def serve_index_page():
        """Serves a status page for the loaded data and the last run."""
        generator = _generator()
        rows = [
            f"<li>State: {generator.state.value}</li>",
            f"<li>Status: {generator.status or 'n/a'}</li>",
        ]
        if generator.data is not None:
            for key, value in data_summary(generator.data).items():
                rows.append(f"<li>{key}: {value}</li>")
        if generator.last_report_path:
            rows.append('<li><a href="/report">Download latest report</a></li>')
        return HTMLResponse(
            content=f"<h1>Experiment Report Generator</h1><ul>{''.join(rows)}</ul>"
        )

    @app.post("/upload")
    async def upload_data(request: Request):
        """Loads an experiment JSON document sent as the request body."""
        body = await request.body()
        try:
            data = _generator().load_data_from_text(body.decode("utf-8", errors="replace"))
        except ValidationError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        return {"status": _generator().status, "summary": data_summary(data)}

    @app.post("/mock")
    async def load_mock():
        try:
            data = _generator().load_mock_data()
        except ValidationError as e:
            return JSONResponse(status_code=500, content={"error": str(e)})
        return {"status": _generator().status, "summary": data_summary(data)}

    @app.post("/generate")
    async def generate(payload: GenerateRequest):
        generator = _generator()
        try:
            report_path = await generator.generate_report(payload.api_key)
        except RunInProgressError as e:
            return JSONResponse(status_code=409, content={"error": str(e)})
        except ValidationError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        except ReportGenerationError as e:
            return JSONResponse(status_code=502, content={"error": str(e)})
        return {"status": generator.status, "report": os.path.basename(report_path)}

    @app.get("/report")
    async def download_report():
        report_path = _generator().last_report_path
        if not report_path or not os.path.exists(report_path):
            return JSONResponse(status_code=404, content={"error": "No report has been generated."})
        return FileResponse(
            report_path, media_type="application/pdf", filename=os.path.basename(report_path)
        )

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        """Returns an empty response to prevent 404 errors for the favicon."""
        return Response(status_code=204)

    return app


# =============================================================================
# SCRIPT EXECUTION (The if __name__ == "__main__" block)
# =============================================================================
def main() -> int:
    """Parses command-line arguments and orchestrates report generation and serving."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
    )
    parser = argparse.ArgumentParser(
        description="Generate an LLM-based PDF report from process experiment results."
    )
    parser.add_argument("--input", type=str, help="Path to an experiment results JSON file.")
    parser.add_argument(
        "--mock", action="store_true", help="Use the bundled mock experiment data."
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=GEMINI_API_KEY,
        help="API key for the LLM provider. Defaults to GOOGLE_API_KEY.",
    )
    parser.add_argument(
        "--config", type=str, default=DEFAULT_REPORT_CONFIG_PATH, help="Path to the YAML config."
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=os.path.join(constants.PROJECT_ROOT, constants.OUTPUT_DIR),
        help="Directory where reports are saved.",
    )
    parser.add_argument(
        "--serve", action="store_true", help="Start the web server instead of generating once."
    )
    parser.add_argument("--port", type=int, default=5001, help="Port for the FastAPI server.")
    parser.add_argument(
        "--host", type=str, default="localhost", help="Host for the FastAPI server."
    )
    args = parser.parse_args()

    try:
        report_config = load_report_config(args.config)
        generator = ReportGenerator(config=report_config, output_dir=args.output_dir)
        if args.input:
            generator.load_data_from_file(args.input)
        elif args.mock:
            generator.load_mock_data()
    except (ValueError, ImportError, FileNotFoundError, ReportGenerationError) as e:
        logger.critical(f"Initialization Error: {e}")
        return 1

    if args.serve:
        app = create_fastapi_app({"generator": generator})
        logger.info(f"FastAPI server starting at: http://{args.host}:{args.port}/")
        logger.info("Press CTRL+C to stop.")
        uvicorn.run(app, host=args.host, port=args.port, log_level="info")
        return 0

    try:
        report_path = asyncio.run(generator.generate_report(args.api_key))
    except ReportGenerationError as e:
        logger.critical(f"Report generation failed: {e}")
        return 1
    logger.info(f"Successfully generated PDF report: {report_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
