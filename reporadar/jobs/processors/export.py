"""Export processor - renders analyses/repositories as CSV or JSON text."""

import csv
import io
import json
from datetime import date, datetime
from typing import Any, Callable, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from reporadar.jobs.errors import InvalidPayloadError
from reporadar.jobs.models import utc_now
from reporadar.jobs.processors.base import JobContext
from reporadar.services.collaborators import ExportDataSource

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RECORDS = 10_000

ExportType = Literal["analyses", "repositories", "saved-repositories"]
ExportFormat = Literal["csv", "json"]

# Leading CSV columns per export type; other keys follow in first-seen order
EXPORT_COLUMNS: dict[str, list[str]] = {
    "analyses": [
        "id",
        "repository_id",
        "repository_name",
        "language",
        "stars",
        "overall_score",
        "originality",
        "completeness",
        "marketability",
        "monetization",
        "usefulness",
        "summary",
        "analyzed_at",
    ],
    "repositories": [
        "id",
        "full_name",
        "description",
        "language",
        "stars",
        "forks",
        "topics",
        "created_at",
    ],
    "saved-repositories": [
        "id",
        "repository_name",
        "description",
        "language",
        "stars",
        "notes",
        "saved_at",
    ],
}

CONTENT_TYPES = {"csv": "text/csv", "json": "application/json"}


class ExportFilters(BaseModel):
    """Row filters. Accepts snake_case or camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    min_score: Optional[float] = Field(default=None, alias="minScore")
    max_score: Optional[float] = Field(default=None, alias="maxScore")
    language: Optional[str] = None

    @model_validator(mode="after")
    def check_ranges(self) -> "ExportFilters":
        if (
            self.min_score is not None
            and self.max_score is not None
            and self.min_score > self.max_score
        ):
            raise ValueError("min_score must be <= max_score")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be <= end_date")
        return self


class ExportRequest(BaseModel):
    """Export job payload."""

    model_config = ConfigDict(populate_by_name=True)

    export_type: ExportType = Field(alias="exportType")
    format: ExportFormat
    filters: ExportFilters = Field(default_factory=ExportFilters)
    user_id: Optional[str] = Field(default=None, alias="userId")

    @field_validator("export_type", mode="before")
    @classmethod
    def normalize_export_type(cls, v: Any) -> Any:
        return "saved-repositories" if v == "saved" else v

    @field_validator("filters", mode="before")
    @classmethod
    def default_filters(cls, v: Any) -> Any:
        return {} if v is None else v

    @model_validator(mode="after")
    def require_user_for_saved(self) -> "ExportRequest":
        if self.export_type == "saved-repositories" and not self.user_id:
            raise ValueError("user_id is required for saved-repositories exports")
        return self


def parse_export_request(payload: dict[str, Any]) -> ExportRequest:
    """Validate an export payload. Raises InvalidPayloadError."""
    try:
        return ExportRequest.model_validate(payload)
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid export payload: {e}") from e


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def format_cell(value: Any) -> str:
    """Render one value as CSV cell text (quoting is left to the csv writer)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return "; ".join(format_cell(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, default=_json_default)
    return str(value)


def csv_columns(export_type: str, rows: list[dict[str, Any]]) -> list[str]:
    columns = list(EXPORT_COLUMNS.get(export_type, []))
    seen = set(columns)
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                columns.append(key)
    return columns


def render_csv(export_type: str, rows: list[dict[str, Any]]) -> str:
    """CSV with a header row. Zero rows gives the header alone."""
    columns = csv_columns(export_type, rows)
    buffer = io.StringIO()
    # Default \r\n terminator makes the writer quote any field holding \r or \n
    writer = csv.writer(buffer)
    writer.writerow(columns)
    for row in rows:
        writer.writerow([format_cell(row.get(column)) for column in columns])
    return buffer.getvalue()


def render_json(rows: list[dict[str, Any]], exported_at: datetime) -> str:
    return json.dumps(
        {
            "exportedAt": exported_at.isoformat(),
            "recordCount": len(rows),
            "records": rows,
        },
        sort_keys=True,
        indent=2,
        default=_json_default,
    )


class ExportProcessor:
    """Fetches rows from the data source and renders the export payload.

    Exports are regenerated from the filters on every attempt; nothing is
    resumed from a previous partial run.
    """

    def __init__(
        self,
        data_source: ExportDataSource,
        max_records: int = DEFAULT_MAX_RECORDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        if max_records < 1:
            raise ValueError("max_records must be >= 1")
        self._data_source = data_source
        self._max_records = max_records
        self._clock = clock

    async def process(self, job: JobContext) -> dict[str, Any]:
        request = parse_export_request(job.payload)
        log = logger.bind(
            job_id=str(job.id),
            attempt=job.attempt,
            export_type=request.export_type,
            format=request.format,
        )
        log.info("export_started")
        await job.report_progress(10)

        filters = request.filters.model_dump(exclude_none=True)
        if request.user_id:
            filters["user_id"] = request.user_id

        # One extra row tells us whether the cap cut anything off
        rows = await self._data_source.query(
            request.export_type, filters, self._max_records + 1
        )
        truncated = len(rows) > self._max_records
        rows = rows[: self._max_records]
        if truncated:
            log.warning("export_truncated", max_records=self._max_records)

        job.raise_if_cancelled()
        await job.report_progress(50)

        now = self._clock()
        if request.format == "csv":
            data = render_csv(request.export_type, rows)
        else:
            data = render_json(rows, now)

        job.raise_if_cancelled()
        await job.report_progress(100)

        log.info("export_finished", record_count=len(rows), truncated=truncated)
        return {
            "export_type": request.export_type,
            "format": request.format,
            "record_count": len(rows),
            "truncated": truncated,
            "file_name": f"{request.export_type}_export_{now:%Y%m%dT%H%M%SZ}.{request.format}",
            "content_type": CONTENT_TYPES[request.format],
            "data": data,
            "completed_at": now.isoformat(),
        }
