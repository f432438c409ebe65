"""Report export to CSV files and the HTML dashboard."""

from __future__ import annotations

import csv
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Mapping, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .reports import ReportRecord
from .stages import Stage
from .types import StageStatus
from .utils import safe_ratio

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
DASHBOARD_TEMPLATE = "dashboard.html"
LIST_SEPARATOR = "; "


def csv_row(record: ReportRecord) -> dict[str, Any]:
    """Flatten a record for CSV output; list fields are joined into one cell."""
    row = record.to_dict()
    for key, value in row.items():
        if isinstance(value, (list, tuple)):
            row[key] = LIST_SEPARATOR.join(str(item) for item in value)
    return row


def export_stage_csv(records: Sequence[ReportRecord], record_type: type[ReportRecord], path: Path) -> None:
    """Export a stage's records as CSV, columns in record field order.

    Args:
        records: Stage output records.
        record_type: Record class, used for the header even when there are no records.
        path: Output file path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=record_type.fieldnames())
        writer.writeheader()
        for record in records:
            writer.writerow(csv_row(record))


def _average(records: Sequence[Any], attribute: str) -> float:
    values = [getattr(record, attribute, 0.0) for record in records]
    return round(safe_ratio(sum(values), len(values)), 1)


def build_overview(results: Mapping[str, Sequence[Any]]) -> list[dict[str, Any]]:
    """Headline figures for the dashboard; each entry is a label and a value."""
    cards: list[dict[str, Any]] = []

    projects = results.get("projects") or []
    cards.append({"label": "Projects", "value": len(projects)})
    if projects:
        cards.append({"label": "Average health", "value": _average(projects, "health_score")})
        grades = Counter(project.health_grade for project in projects)
        cards.append({
            "label": "Health grades",
            "value": " ".join(f"{grade}:{grades[grade]}" for grade in "ABCDF" if grades[grade]),
        })

    security = results.get("security_scans") or []
    if security:
        cards.append({"label": "Critical vulnerabilities", "value": sum(r.critical for r in security)})
        cards.append({
            "label": "High/critical risk projects",
            "value": sum(1 for r in security if r.risk_level in ("critical", "high")),
        })

    cost = results.get("cost") or []
    if cost:
        total = round(sum(r.estimated_monthly_cost for r in cost), 2)
        cards.append({"label": "Estimated monthly cost", "value": f"${total:,.2f}"})

    team = results.get("team") or []
    if team:
        cards.append({"label": "Active users", "value": f"{sum(1 for u in team if u.active)} / {len(team)}"})

    adoption = results.get("adoption") or []
    if adoption:
        cards.append({"label": "Average adoption", "value": _average(adoption, "adoption_score")})

    maturity = results.get("devops_maturity") or []
    if maturity:
        cards.append({"label": "Average maturity score", "value": _average(maturity, "maturity_score")})

    barriers = results.get("adoption_barriers") or []
    common = Counter(barrier for record in barriers for barrier in record.barriers).most_common(1)
    if common:
        cards.append({"label": "Most common barrier", "value": f"{common[0][0]} ({common[0][1]})"})

    return cards


def build_sections(
    stages: Sequence[Stage],
    results: Mapping[str, Sequence[ReportRecord]],
    statuses: Mapping[str, StageStatus],
) -> list[dict[str, Any]]:
    """One table per stage, in pipeline order."""
    sections = []
    for stage in stages:
        records = results.get(stage.name) or []
        columns = stage.record_type.fieldnames()
        sections.append({
            "name": stage.name,
            "title": stage.title,
            "status": statuses[stage.name].value if stage.name in statuses else "pending",
            "columns": columns,
            "rows": [[csv_row(record)[column] for column in columns] for record in records],
        })
    return sections


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(["html", "xml"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_dashboard(context: Mapping[str, Any], path: Path) -> None:
    """Render the HTML dashboard.

    Args:
        context: Template variables (overview, sections, run metadata).
        path: Output file path.
    """
    template = _environment().get_template(DASHBOARD_TEMPLATE)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(template.render(**context), encoding="utf-8")


def export_all(
    output_dir: Path,
    stages: Sequence[Stage],
    results: Mapping[str, Sequence[ReportRecord]],
    statuses: Mapping[str, StageStatus],
    **run_info: Any,
) -> list[Path]:
    """
    Write one CSV per stage that was not skipped, then the dashboard.

    Args:
        output_dir: Directory receiving the exports
        stages: Pipeline stages in order
        results: Stage name to output records
        statuses: Stage name to terminal status
        **run_info: Extra values shown in the dashboard header

    Returns:
        Paths of the written files
    """
    output_dir = Path(output_dir)
    written: list[Path] = []

    for stage in stages:
        if statuses.get(stage.name) == StageStatus.SKIPPED:
            continue
        path = output_dir / f"{stage.name}.csv"
        export_stage_csv(results.get(stage.name) or [], stage.record_type, path)
        written.append(path)
    logger.info(f"Exported {len(written)} CSV files to {output_dir}")

    dashboard_path = output_dir / "dashboard.html"
    render_dashboard(
        {
            "overview": build_overview(results),
            "sections": build_sections(stages, results, statuses),
            **run_info,
        },
        dashboard_path,
    )
    written.append(dashboard_path)
    logger.info(f"Dashboard saved to {dashboard_path}")
    return written
