"""
FastAPI application for the SEO & GEO Health Checker.
Provides endpoints for validating URLs, starting analysis jobs, tracking
their progress and exporting scored reports.
"""
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type, TypeVar

import pydantic
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from seo_geo_checker.analysis_config import PRESETS, ConfigStore, ConfigValidationError, validate_config
from seo_geo_checker.config import Settings
from seo_geo_checker.errors import APIError, NotFound, PayloadTooLarge, RateLimited, RequestMalformed, field_error
from seo_geo_checker.jobs import (
    InMemoryJobStore, InvalidJobIdError, JobNotFoundError, JobService, JobStateError, JobStore
)
from seo_geo_checker.models import (
    ExportRequest, FeatureFlags, MultiExportRequest, ScoringWeightsUpdate, SingleUrlRequest,
    StartAnalysisRequest, Thresholds, UrlListRequest
)
from seo_geo_checker.rate_limit import RateLimiter
from seo_geo_checker.reports import CONTENT_TYPES, ReportStore
from seo_geo_checker.security import (
    IDENTIFYING_HEADERS, SECURITY_HEADERS, check_filename, client_key, content_length_exceeds, read_json_body
)
from seo_geo_checker.validation import URLValidator

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)

ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
ALLOWED_HEADERS = ["Content-Type", "Authorization", "X-API-Key", "X-Request-ID"]
RATE_LIMIT_HEADERS = ["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler()
        ]
    )


def parse_model(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    """Validate a decoded body against ``model``, mapping failures to a 400 envelope."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise RequestMalformed(details=[
            field_error(".".join(str(part) for part in err["loc"]) or "body", err["msg"])
            for err in e.errors()
        ])


def route_class(method: str, path: str) -> Optional[str]:
    """Pick the rate-limit bucket for a request, or None for the global bucket only."""
    if path.startswith("/api/analysis/start"):
        return "analysis"
    if path.startswith("/api/validation"):
        return "validation"
    if path.startswith("/api/export") and method == "POST":
        return "export"
    return None


def build_rate_limiters(settings: Settings) -> Dict[str, RateLimiter]:
    return {
        "global": RateLimiter(settings.global_limit),
        "analysis": RateLimiter(settings.analysis_limit),
        "validation": RateLimiter(settings.validation_limit),
        "export": RateLimiter(settings.export_limit),
    }


def create_app(
    settings: Optional[Settings] = None,
    job_store: Optional[JobStore] = None,
    validator: Optional[URLValidator] = None,
    report_store: Optional[ReportStore] = None,
    rate_limiters: Optional[Dict[str, RateLimiter]] = None,
    config_store: Optional[ConfigStore] = None,
) -> FastAPI:
    """
    Build the API with its collaborators.

    Args:
        settings: Runtime settings; read from the environment when omitted
        job_store: Storage for analysis jobs, shared with the analysis worker
        validator: URL validator
        report_store: Where export files are written and served from
        rate_limiters: Limiters keyed by route class ("global", "analysis", "validation", "export")
        config_store: Current analysis configuration new jobs start from

    Returns:
        Configured FastAPI application
    """
    settings = settings or Settings.from_env()
    config_store = config_store or ConfigStore()
    jobs = JobService(job_store or InMemoryJobStore(), config_store)
    validator = validator or URLValidator(max_urls=settings.max_urls_per_request)
    report_store = report_store or ReportStore(settings.reports_dir)
    limiters = rate_limiters or build_rate_limiters(settings)

    app = FastAPI(
        title="SEO & GEO Health Checker API",
        description="""
        Validates website URLs, issues SEO/GEO analysis jobs, reports their
        progress and exports scored reports.

        ## Usage
        1. Validate the URLs of one site
        2. Start an analysis job and poll its status
        3. Export the results as JSON or CSV
        """,
        version=settings.version,
        docs_url="/api-docs",
    )
    app.state.settings = settings
    app.state.jobs = jobs
    app.state.validator = validator
    app.state.report_store = report_store
    app.state.rate_limiters = limiters
    app.state.config_store = config_store

    # --- Error handlers ---

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_envelope(), headers=exc.headers)

    @app.exception_handler(InvalidJobIdError)
    async def invalid_job_id_handler(request: Request, exc: InvalidJobIdError):
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid job ID format"})

    @app.exception_handler(JobNotFoundError)
    async def job_not_found_handler(request: Request, exc: JobNotFoundError):
        return JSONResponse(status_code=404, content={
            "success": False,
            "error": "Job not found",
            "message": f"Analysis job with ID {exc} not found",
        })

    @app.exception_handler(ConfigValidationError)
    async def config_validation_handler(request: Request, exc: ConfigValidationError):
        error = RequestMalformed(error="Invalid configuration", extra={"validationErrors": exc.errors})
        return JSONResponse(status_code=error.status_code, content=error.to_envelope())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            field_error(".".join(str(part) for part in err["loc"][1:]) or "request", err["msg"])
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content=RequestMalformed(details=details).to_envelope())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # Unsupported methods are reported like unknown routes
        if exc.status_code in (404, 405):
            return JSONResponse(status_code=404, content={
                "success": False,
                "error": "Not found",
                "message": f"Route {request.url.path} not found",
            })
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc.detail)})

    # --- Middleware (innermost first) ---

    @app.middleware("http")
    async def catch_unhandled_errors(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, "request_id", "-")
            logger.error(f"[{request_id}] Unhandled error on {request.method} {request.url.path}: {e}", exc_info=True)
            error = APIError("Something went wrong" if settings.is_production else str(e))
            return JSONResponse(status_code=error.status_code, content=error.to_envelope())

    @app.middleware("http")
    async def limit_payload_size(request: Request, call_next):
        if content_length_exceeds(request, settings.max_body_bytes):
            request_id = getattr(request.state, "request_id", "-")
            logger.warning(
                f"[{request_id}] Request size too large on {request.url.path}: "
                f"{request.headers.get('content-length')} bytes"
            )
            error = PayloadTooLarge(
                f"Request size exceeds maximum allowed size of {settings.max_body_bytes // (1024 * 1024)}MB"
            )
            return JSONResponse(status_code=error.status_code, content=error.to_envelope())
        return await call_next(request)

    @app.middleware("http")
    async def apply_rate_limits(request: Request, call_next):
        if not settings.rate_limit_enabled or request.method == "OPTIONS":
            return await call_next(request)

        key = client_key(request)
        bucket = route_class(request.method, request.url.path)
        decision = None
        for name in ("global", bucket):
            if name is None or name not in limiters:
                continue
            limiter = limiters[name]
            decision = await limiter.hit(key)
            if not decision.allowed:
                request_id = getattr(request.state, "request_id", "-")
                logger.warning(f"[{request_id}] Rate limit exceeded ({name}) for {key} on {request.url.path}")
                headers = decision.headers()
                headers["Retry-After"] = str(decision.retry_after)
                error = RateLimited(
                    limiter.policy.message, extra={"retryAfter": decision.retry_after}, headers=headers
                )
                return JSONResponse(status_code=error.status_code, content=error.to_envelope(), headers=error.headers)

        response = await call_next(request)
        if decision is not None:
            response.headers.update(decision.headers())
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
        expose_headers=RATE_LIMIT_HEADERS + ["X-Request-ID"],
        max_age=3600,
    )

    @app.middleware("http")
    async def handle_preflight(request: Request, call_next):
        if request.method != "OPTIONS":
            return await call_next(request)

        origin = request.headers.get("origin")
        if "*" in settings.cors_origins:
            allow_origin = "*"
        elif origin in settings.cors_origins:
            allow_origin = origin
        else:
            allow_origin = settings.cors_origins[0] if settings.cors_origins else "null"

        headers = {
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Methods": ", ".join(ALLOWED_METHODS),
            "Access-Control-Allow-Headers": ", ".join(ALLOWED_HEADERS),
            "Access-Control-Max-Age": "3600",
            "Vary": "Origin",
        }
        if allow_origin != "*":
            headers["Access-Control-Allow-Credentials"] = "true"
        return Response(status_code=204, headers=headers)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()
        logger.info(f"[{request_id}] {request.method} {request.url.path} from {client_key(request)}")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(f"[{request_id}] Completed {request.method} {request.url.path} -> {response.status_code} in {duration_ms:.1f}ms")
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        for name in IDENTIFYING_HEADERS:
            if name in response.headers:
                del response.headers[name]
        return response

    # --- Service endpoints ---

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.version,
        }

    @app.get("/api")
    async def api_info():
        return {
            "message": "SEO & GEO Health Checker API",
            "version": settings.version,
            "documentation": "/api-docs",
            "endpoints": {
                "health": "/health",
                "validation": "/api/validation",
                "analysis": "/api/analysis",
                "export": "/api/export",
                "config": "/api/config",
            },
        }

    # --- Analysis configuration ---

    @app.get("/api/config")
    async def get_config():
        return {"success": True, "config": await config_store.current()}

    @app.put("/api/config/scoring-weights")
    async def update_scoring_weights(request: Request):
        body = await read_json_body(request, settings.max_body_bytes)
        payload = parse_model(ScoringWeightsUpdate, body)
        config = await config_store.update(payload.model_dump(exclude_none=True), "scoring weights")
        return {"success": True, "config": config, "message": "Scoring weights updated successfully"}

    @app.put("/api/config/thresholds")
    async def update_thresholds(request: Request):
        body = await read_json_body(request, settings.max_body_bytes)
        payload = parse_model(Thresholds, body)
        config = await config_store.update({"thresholds": payload.model_dump(exclude_none=True)}, "thresholds")
        return {"success": True, "config": config, "message": "Thresholds updated successfully"}

    @app.put("/api/config/feature-flags")
    async def update_feature_flags(request: Request):
        body = await read_json_body(request, settings.max_body_bytes)
        payload = parse_model(FeatureFlags, body)
        config = await config_store.update({"featureFlags": payload.model_dump(exclude_none=True)}, "feature flags")
        return {"success": True, "config": config, "message": "Feature flags updated successfully"}

    @app.get("/api/config/presets")
    async def list_presets():
        return {"success": True, "presets": PRESETS, "presetNames": list(PRESETS)}

    @app.post("/api/config/presets/{preset_name}")
    async def apply_preset(preset_name: str):
        try:
            config = await config_store.apply_preset(preset_name)
        except KeyError:
            raise RequestMalformed(
                f"Available presets: {', '.join(PRESETS)}",
                error="Unknown preset",
            )
        return {"success": True, "config": config, "message": f"Applied preset: {preset_name}"}

    @app.post("/api/config/reset")
    async def reset_config():
        config = await config_store.reset()
        return {"success": True, "config": config, "message": "Configuration reset to defaults"}

    @app.post("/api/config/validate")
    async def check_config(request: Request):
        body = await read_json_body(request, settings.max_body_bytes)
        errors = validate_config(body)
        return {"success": True, "validation": {"valid": not errors, "errors": errors}}

    @app.get("/api/config/threshold/{key}")
    async def get_threshold(key: str):
        value = await config_store.threshold(key)
        if value is None:
            raise NotFound(error="Threshold not found")
        return {"success": True, "key": key, "value": value}

    @app.get("/api/config/feature/{feature}")
    async def check_feature(feature: str):
        enabled = await config_store.feature_enabled(feature)
        if enabled is None:
            raise NotFound(error="Feature flag not found")
        return {"success": True, "feature": feature, "enabled": enabled}

    @app.get("/api/config/export")
    async def export_config(export_format: str = Query("json", alias="format")):
        if export_format != "json":
            raise RequestMalformed("Unsupported export format. Only JSON is supported.")
        return JSONResponse(
            content=await config_store.current(),
            headers={"Content-Disposition": 'attachment; filename="analysis-config.json"'},
        )

    @app.post("/api/config/import")
    async def import_config(request: Request):
        body = await read_json_body(request, settings.max_body_bytes)
        config = await config_store.replace(body)
        return {"success": True, "config": config, "message": "Configuration imported successfully"}

    # --- Validation ---

    @app.post("/api/validation/urls")
    async def validate_urls(request: Request):
        """
        Validate and normalize a list of URLs.

        Malformed URLs are reported per element in ``errors``; the request
        itself only fails when ``urls`` is missing or empty.
        """
        body = await read_json_body(request, settings.max_body_bytes)
        payload = parse_model(UrlListRequest, body)

        result = validator.validate_urls(payload.urls)
        if result.valid:
            logger.info(f"[{request.state.request_id}] Validated {result.url_count} URL(s) for {result.domain}")
        else:
            logger.warning(
                f"[{request.state.request_id}] URL validation found {len(result.errors)} problem(s): "
                f"{[issue.code for issue in result.errors]}"
            )
        return result.to_json_dict()

    @app.post("/api/validation/domain-consistency")
    async def check_domain_consistency(request: Request):
        body = await read_json_body(request, settings.max_body_bytes)
        payload = parse_model(UrlListRequest, body)

        consistent = validator.check_domain_consistency(payload.urls)
        domain = None
        if consistent:
            try:
                domain = validator.normalize_domain(payload.urls[0])
            except ValueError:
                logger.warning(f"[{request.state.request_id}] Could not extract domain from first URL")
        return {"success": True, "consistent": consistent, "domain": domain, "urlCount": len(payload.urls)}

    @app.post("/api/validation/normalize-url")
    async def normalize_single_url(request: Request):
        body = await read_json_body(request, settings.max_body_bytes)
        payload = parse_model(SingleUrlRequest, body)

        result = validator.validate_urls([payload.url])
        if not result.valid:
            raise RequestMalformed(
                error="URL validation failed",
                details=[issue.model_dump(mode="json") for issue in result.errors],
            )
        return {
            "success": True,
            "originalUrl": payload.url,
            "normalizedUrl": result.normalized_urls[0],
            "domain": result.domain,
        }

    @app.post("/api/validation/check-accessibility")
    async def check_accessibility(request: Request):
        body = await read_json_body(request, settings.max_body_bytes)
        payload = parse_model(SingleUrlRequest, body)

        result = validator.validate_urls([payload.url])
        if not result.valid:
            raise RequestMalformed(
                error="URL validation failed",
                details=[issue.model_dump(mode="json") for issue in result.errors],
            )
        url = result.normalized_urls[0]
        accessibility = await validator.check_accessibility(url)
        return {"success": True, "url": url, **accessibility}

    # --- Analysis jobs ---

    @app.post("/api/analysis/start")
    async def start_analysis(request: Request):
        """Validate the URLs and issue a new analysis job."""
        body = await read_json_body(request, settings.max_body_bytes)
        payload = parse_model(StartAnalysisRequest, body)

        if len(payload.urls) > settings.max_urls_per_request:
            raise RequestMalformed(details=[
                field_error("urls", f"Maximum {settings.max_urls_per_request} URLs allowed")
            ])

        validation = validator.validate_urls(payload.urls)
        if not validation.valid:
            logger.warning(f"[{request.state.request_id}] Refusing analysis: {len(validation.errors)} invalid URL(s)")
            raise RequestMalformed(
                error="URL validation failed",
                details=[issue.model_dump(mode="json") for issue in validation.errors],
            )

        overrides = payload.config.model_dump(exclude_none=True) if payload.config else None
        job = await jobs.start(validation.normalized_urls, overrides)
        logger.info(f"[{request.state.request_id}] Analysis job {job.job_id} started for {validation.domain}")
        return job.to_json_dict()

    @app.get("/api/analysis/status/{job_id}")
    async def analysis_status(job_id: str):
        report = await jobs.status(job_id)
        return report.to_json_dict()

    @app.get("/api/analysis/results/{job_id}")
    async def analysis_results(job_id: str):
        try:
            results = await jobs.results(job_id)
        except JobStateError as e:
            raise RequestMalformed(str(e), error="Job not completed")
        return {"success": True, **results}

    @app.post("/api/analysis/cancel/{job_id}")
    async def cancel_analysis(job_id: str):
        try:
            job = await jobs.cancel(job_id)
        except JobStateError:
            raise NotFound(
                f"Analysis job with ID {job_id} not found or not in a cancellable state",
                error="Job not found or cannot be cancelled",
            )
        return {"success": True, "jobId": job.job_id, "status": job.status.value}

    @app.get("/api/analysis/stats")
    async def analysis_stats():
        return {"success": True, "stats": await jobs.stats()}

    # --- Export ---

    @app.post("/api/export")
    async def export_report(request: Request):
        body = await read_json_body(request, settings.max_body_bytes)
        payload = parse_model(ExportRequest, body)

        report = await run_in_threadpool(
            report_store.write, payload.format, payload.results, payload.includeDetails, payload.customNotes
        )
        logger.info(f"[{request.state.request_id}] Export {report.filename} generated")
        return {
            "success": True,
            "filename": report.filename,
            "downloadUrl": report.download_url,
            "format": payload.format.value,
            "metadata": {
                "fileSize": report.file_size,
                "resultCount": report.result_count,
                "generatedAt": report.created_at.isoformat(),
            },
        }

    @app.post("/api/export/multi")
    async def export_multi(request: Request):
        body = await read_json_body(request, settings.max_body_bytes)
        payload = parse_model(MultiExportRequest, body)

        files = []
        for export_format in dict.fromkeys(payload.formats):
            report = await run_in_threadpool(
                report_store.write, export_format, payload.results, payload.includeDetails, payload.customNotes
            )
            files.append(report.to_json_dict())
        logger.info(f"[{request.state.request_id}] Multi-format export generated {len(files)} file(s)")
        return {"success": True, "files": files}

    @app.get("/api/export/list")
    async def list_reports():
        reports = await run_in_threadpool(report_store.list_reports)
        return {"success": True, "files": [report.to_json_dict() for report in reports]}

    @app.get("/api/export/download/{filename:path}")
    async def download_report(filename: str):
        check_filename(filename)
        path = report_store.resolve(filename)
        if path is None:
            raise NotFound(f"Report {filename} not found")
        return FileResponse(
            path,
            media_type=CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream"),
            filename=filename,
        )

    @app.delete("/api/export/cleanup")
    async def cleanup_reports(days_old: int = Query(30, alias="daysOld", ge=1, le=365)):
        removed = await run_in_threadpool(report_store.cleanup, days_old)
        return {"success": True, "removed": removed, "message": f"Cleaned up reports older than {days_old} days"}

    return app


settings = Settings.from_env()
configure_logging(settings.log_level)
app = create_app(settings)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, server_header=False)
