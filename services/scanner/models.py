import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from common.errors import PayloadError
from common.states import JobStatus, JobType

EXTRACTION_VERSION = "1.0"


class Job(BaseModel):
    """One row of scraper_jobs as seen by this worker."""

    model_config = ConfigDict(extra="ignore")

    id: uuid.UUID
    job_type: JobType
    status: JobStatus
    priority: int = 5
    run_at: datetime
    attempts: int = 0
    max_attempts: int = 3
    lock_token: Optional[uuid.UUID] = None
    locked_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime
    payload: Dict[str, Any] = Field(default_factory=dict)
    progress_completed: int = 0
    progress_total: Optional[int] = None


class ScanJobPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    scan_id: uuid.UUID = Field(alias="scanId")
    file_url: str = Field(alias="fileUrl", min_length=1)
    file_name: Optional[str] = Field(default=None, alias="fileName")
    selected_pages: List[int] = Field(default_factory=list, alias="selectedPages")
    project_id: Optional[uuid.UUID] = Field(default=None, alias="projectId")

    @field_validator("selected_pages")
    @classmethod
    def _pages_are_positive(cls, pages: List[int]) -> List[int]:
        if any(p < 1 for p in pages):
            raise ValueError("selectedPages are 1-based page numbers")
        return pages

    @classmethod
    def from_job(cls, job: Job) -> "ScanJobPayload":
        try:
            return cls.model_validate(job.payload)
        except ValidationError as e:
            raise PayloadError(f"Invalid mapping sheet payload: {e.errors(include_url=False)}") from e


# ------------------------------------------------------------
# Extraction output
# ------------------------------------------------------------

class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ProjectDetails(_Lenient):
    organiser: Optional[str] = None
    project_name: Optional[str] = None
    project_value: Optional[float] = None
    address: Optional[str] = None
    builder: Optional[str] = None
    proposed_start_date: Optional[str] = None
    proposed_finish_date: Optional[str] = None
    roe_email: Optional[str] = None
    project_type: Optional[str] = None
    state_funding: Optional[float] = None
    federal_funding: Optional[float] = None
    eba_with_cfmeu: Optional[bool] = None


class SiteContact(_Lenient):
    role: Literal["project_manager", "site_manager", "site_delegate", "site_hsr"]
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class Subcontractor(_Lenient):
    stage: Literal["early_works", "structure", "finishing", "other"]
    trade: str
    company: Optional[str] = None
    eba: Optional[bool] = None


class ConfidenceScores(_Lenient):
    overall: float = Field(ge=0, le=1)
    project: Dict[str, float] = Field(default_factory=dict)
    site_contacts: List[float] = Field(default_factory=list)
    subcontractors: List[float] = Field(default_factory=list)

    @field_validator("project")
    @classmethod
    def _field_scores_in_range(cls, scores: Dict[str, float]) -> Dict[str, float]:
        for name, score in scores.items():
            if not 0 <= score <= 1:
                raise ValueError(f"confidence for {name} must be within [0, 1]")
        return scores

    @field_validator("site_contacts", "subcontractors")
    @classmethod
    def _entry_scores_in_range(cls, scores: List[float]) -> List[float]:
        if any(not 0 <= s <= 1 for s in scores):
            raise ValueError("confidence scores must be within [0, 1]")
        return scores


class MappingSheetExtraction(_Lenient):
    extraction_version: str = EXTRACTION_VERSION
    pages_processed: Optional[int] = None
    project: ProjectDetails = Field(default_factory=ProjectDetails)
    site_contacts: List[SiteContact] = Field(default_factory=list)
    subcontractors: List[Subcontractor] = Field(default_factory=list)
    confidence: ConfidenceScores
    warnings: List[str] = Field(default_factory=list)


class ExtractionResult(BaseModel):
    success: bool
    provider: str
    cost_usd: float = 0.0
    processing_time_ms: int = 0
    images_processed: int = 0
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    extracted_data: Optional[MappingSheetExtraction] = None
    error: Optional[str] = None


class ProcessingSummary(BaseModel):
    scan_id: uuid.UUID
    provider: str
    cost_usd: float
    processing_time_ms: int
    pages_processed: int
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
