"""
SEO & GEO Health Checker API
Validates website URLs, issues analysis jobs and exports scored reports.
"""

from .models import (
    UrlIssue, UrlValidationResult, JobStatus, JobProgress,
    AnalysisJob, JobStatusResponse, ExportFormat, ReportFile
)
from .validation import URLValidator, InvalidURLError, normalize_url
from .jobs import JobId, JobService, JobStore, InMemoryJobStore, InvalidJobIdError
from .analysis_config import ConfigStore, ConfigValidationError
from .rate_limit import RateLimiter, RateLimitDecision
from .reports import ReportStore

__version__ = "1.0.0"
