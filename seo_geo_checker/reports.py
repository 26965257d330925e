"""
Report files for exported analysis results.
"""
import csv
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from seo_geo_checker.models import ExportFormat, ReportFile, ScoredResult

logger = logging.getLogger(__name__)

CONTENT_TYPES: Dict[str, str] = {
    ".json": "application/json",
    ".csv": "text/csv",
}

CSV_COLUMNS = [
    ("url", "URL"),
    ("timestamp", "Analysis Date"),
    ("overallScore", "Overall Score"),
    ("seo.overall", "SEO Score"),
    ("seo.technical", "Technical SEO"),
    ("seo.content", "Content SEO"),
    ("seo.structure", "Structure SEO"),
    ("geo.overall", "GEO Score"),
    ("geo.readability", "Readability"),
    ("geo.credibility", "Credibility"),
    ("geo.completeness", "Completeness"),
    ("geo.structuredData", "Structured Data"),
    ("recommendationCount", "Recommendations"),
]


def download_url(filename: str) -> str:
    return f"/api/export/download/{filename}"


class ReportStore:
    """
    Writes export files to a local directory and serves them back.

    Attributes:
        reports_dir: Directory holding generated reports
    """

    def __init__(self, reports_dir: str = "reports"):
        self.reports_dir = Path(reports_dir)

    def _ensure_dir(self) -> None:
        self.reports_dir.mkdir(parents=True, exist_ok=True)

    def _new_filename(self, export_format: ExportFormat) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        return f"seo-geo-report-{timestamp}-{uuid.uuid4().hex[:8]}.{export_format.value}"

    def _describe(self, path: Path, result_count: Optional[int] = None) -> ReportFile:
        stats = path.stat()
        return ReportFile(
            filename=path.name,
            format=path.suffix.lstrip(".").upper(),
            file_size=stats.st_size,
            created_at=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
            download_url=download_url(path.name),
            result_count=result_count,
        )

    def _write_json(self, path: Path, results: List[ScoredResult], include_details: bool, notes: Optional[str]):
        payload: Dict[str, Any] = {
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "summary": {
                "totalUrls": len(results),
                "averageScore": round(sum(r.overallScore for r in results) / len(results)),
            },
            "results": [
                r.model_dump(mode="json") if include_details
                else {"url": r.url, "overallScore": r.overallScore}
                for r in results
            ],
        }
        if notes:
            payload["notes"] = notes
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)

    def _write_csv(self, path: Path, results: List[ScoredResult]):
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([title for _, title in CSV_COLUMNS])
            for result in results:
                row = {
                    "url": result.url,
                    "timestamp": result.timestamp or "",
                    "overallScore": result.overallScore,
                    "recommendationCount": len(result.recommendations),
                }
                for key, value in result.seoScore.items():
                    row[f"seo.{key}"] = value
                for key, value in result.geoScore.items():
                    row[f"geo.{key}"] = value
                writer.writerow([row.get(column, "") for column, _ in CSV_COLUMNS])

    def write(
        self,
        export_format: ExportFormat,
        results: List[ScoredResult],
        include_details: bool = True,
        notes: Optional[str] = None,
    ) -> ReportFile:
        self._ensure_dir()
        path = self.reports_dir / self._new_filename(export_format)

        if export_format == ExportFormat.JSON:
            self._write_json(path, results, include_details, notes)
        else:
            self._write_csv(path, results)

        report = self._describe(path, result_count=len(results))
        logger.info(f"Report written to {path} ({report.file_size} bytes)")
        return report

    def list_reports(self) -> List[ReportFile]:
        if not self.reports_dir.is_dir():
            return []
        reports = [
            self._describe(path)
            for path in self.reports_dir.iterdir()
            if path.is_file() and path.suffix in CONTENT_TYPES
        ]
        return sorted(reports, key=lambda r: r.created_at, reverse=True)

    def resolve(self, filename: str) -> Optional[Path]:
        """Return the path of an existing report, or None. ``filename`` must already be checked."""
        path = (self.reports_dir / filename).resolve()
        if path.parent != self.reports_dir.resolve() or not path.is_file():
            return None
        return path

    def cleanup(self, days_old: int) -> int:
        if not self.reports_dir.is_dir():
            return 0
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_old)
        removed = 0
        for report in self.list_reports():
            if report.created_at < cutoff:
                (self.reports_dir / report.filename).unlink(missing_ok=True)
                removed += 1
        logger.info(f"Removed {removed} report(s) older than {days_old} days")
        return removed
