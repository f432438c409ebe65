"""Security posture: vulnerability counts and enabled scanners."""

from __future__ import annotations

from collections import Counter
from typing import List

from ..ci_parser import SECURITY_SCANNERS
from ..reports import ProjectReport, SecurityScanReport
from ..scoring import calculate_security_score
from .base import StageContext, run_per_project

STAGE = "security_scans"

SEVERITIES = ("critical", "high", "medium", "low", "info")


def scan_project(ctx: StageContext, project: ProjectReport) -> SecurityScanReport:
    vulnerabilities = ctx.client.request(
        f"/projects/{project.project_id}/vulnerabilities?state=detected",
        all_pages=True,
        per_page=ctx.config.per_page,
        max_pages=ctx.page_budget,
    )
    severities = Counter(
        str(v.get("severity", "unknown")).lower() for v in vulnerabilities if isinstance(v, dict)
    )
    report_types = {str(v.get("report_type", "")).lower() for v in vulnerabilities if isinstance(v, dict)}

    scanners = set(ctx.ci_profile(project).security_scanners)
    scanners.update(t for t in report_types if t in SECURITY_SCANNERS)

    counts = {severity: severities.get(severity, 0) for severity in SEVERITIES}
    score, risk = calculate_security_score(counts, len(scanners), ctx.policy)

    return SecurityScanReport(
        project_id=project.project_id,
        project_name=project.project_name,
        critical=counts["critical"],
        high=counts["high"],
        medium=counts["medium"],
        low=counts["low"],
        info=counts["info"],
        total_vulnerabilities=sum(severities.values()),
        has_sast="sast" in scanners,
        has_dependency_scanning="dependency_scanning" in scanners,
        has_secret_detection="secret_detection" in scanners,
        has_container_scanning="container_scanning" in scanners,
        has_dast="dast" in scanners,
        scanners_enabled=len(scanners),
        security_score=score,
        risk_level=risk,
    )


def compute_security(ctx: StageContext) -> List[SecurityScanReport]:
    return run_per_project(ctx, STAGE, SecurityScanReport, lambda project: scan_project(ctx, project))
