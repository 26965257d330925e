"""
Pydantic models for the SEO & GEO Health Checker API.
Defines the data structures for API requests, responses, and analysis jobs.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that serializes field names in camelCase for the frontend."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# --- Validation ---

class UrlIssue(CamelModel):
    """A problem found with one URL (or with the URL list as a whole)."""
    field: str
    message: str
    code: str


class UrlValidationResult(CamelModel):
    """
    Outcome of validating a URL list.

    ``success`` describes the request, ``valid`` describes the URLs: a
    well-formed request with bad URLs is still a success.
    """
    success: bool = True
    valid: bool
    normalized_urls: List[str] = []
    errors: List[UrlIssue] = []
    warnings: List[UrlIssue] = []
    domain: Optional[str] = None
    url_count: int = 0

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "success": True,
                "valid": True,
                "normalizedUrls": ["https://example.com", "https://example.com/about"],
                "errors": [],
                "warnings": [],
                "domain": "example.com",
                "urlCount": 2,
            }
        },
    )


class UrlListRequest(BaseModel):
    """Request body carrying a list of URLs."""
    urls: List[str] = Field(..., min_length=1, description="URLs to validate or analyze")


class SingleUrlRequest(BaseModel):
    url: str = Field(..., min_length=1)


# --- Analysis jobs ---

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class SeoWeights(BaseModel):
    model_config = ConfigDict(extra="ignore")
    technical: Optional[float] = Field(None, ge=0, le=1)
    content: Optional[float] = Field(None, ge=0, le=1)
    structure: Optional[float] = Field(None, ge=0, le=1)


class GeoWeights(BaseModel):
    model_config = ConfigDict(extra="ignore")
    readability: Optional[float] = Field(None, ge=0, le=1)
    credibility: Optional[float] = Field(None, ge=0, le=1)
    completeness: Optional[float] = Field(None, ge=0, le=1)
    structuredData: Optional[float] = Field(None, ge=0, le=1)


class Thresholds(BaseModel):
    model_config = ConfigDict(extra="ignore")
    pageSpeedMin: Optional[float] = Field(None, ge=0, le=100)
    contentLengthMin: Optional[float] = Field(None, ge=0)
    headingLevels: Optional[int] = Field(None, ge=1, le=6)


class FeatureFlags(BaseModel):
    model_config = ConfigDict(extra="ignore")
    enableExperimentalGEO: Optional[bool] = None
    enableAdvancedStructuredData: Optional[bool] = None
    enableAIContentAnalysis: Optional[bool] = None
    enablePerformanceOptimizations: Optional[bool] = None
    enableBetaRecommendations: Optional[bool] = None


class ScoringWeightsUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    seoWeights: Optional[SeoWeights] = None
    geoWeights: Optional[GeoWeights] = None


class AnalysisConfigOverrides(BaseModel):
    """Partial analysis configuration supplied with a start request."""
    model_config = ConfigDict(extra="ignore")
    seoWeights: Optional[SeoWeights] = None
    geoWeights: Optional[GeoWeights] = None
    thresholds: Optional[Thresholds] = None


class StartAnalysisRequest(UrlListRequest):
    config: Optional[AnalysisConfigOverrides] = None


class JobProgress(CamelModel):
    """Progress of a job; ``percentage`` is derived from ``completed``/``total``."""
    completed: int = 0
    total: int
    percentage: int = 0


class AnalysisJob(CamelModel):
    """Record kept by the job store for one analysis request."""
    job_id: str
    status: JobStatus = JobStatus.PENDING
    urls: List[str]
    created_at: datetime
    updated_at: Optional[datetime] = None
    config: Dict[str, Any] = {}
    completed: int = 0
    current_url: Optional[str] = None
    results: List[Dict[str, Any]] = []
    error: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.urls)


class StartAnalysisResponse(CamelModel):
    success: bool = True
    job_id: str
    status: JobStatus
    urls: List[str]
    created_at: datetime
    url_count: int
    estimated_duration: int


class JobStatusResponse(CamelModel):
    success: bool = True
    job_id: str
    status: JobStatus
    progress: JobProgress
    current_url: Optional[str] = None
    estimated_time_remaining: Optional[int] = None
    error: Optional[str] = None


# --- Export ---

class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


class ScoredResult(BaseModel):
    """One analysed URL as submitted for export. Unknown keys are dropped."""
    model_config = ConfigDict(extra="ignore")
    url: str = Field(..., min_length=1)
    timestamp: Optional[str] = None
    overallScore: float
    seoScore: Dict[str, Any]
    geoScore: Dict[str, Any]
    recommendations: List[Dict[str, Any]] = []


class ExportRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    format: ExportFormat
    results: List[ScoredResult] = Field(..., min_length=1)
    includeDetails: bool = True
    customNotes: Optional[str] = Field(None, max_length=5000)


class MultiExportRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    formats: List[ExportFormat] = Field(..., min_length=1)
    results: List[ScoredResult] = Field(..., min_length=1)
    includeDetails: bool = True
    customNotes: Optional[str] = Field(None, max_length=5000)


class ReportFile(CamelModel):
    filename: str
    format: str
    file_size: int
    created_at: datetime
    download_url: str
    result_count: Optional[int] = None
