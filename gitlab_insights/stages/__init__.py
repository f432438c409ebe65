"""
Pipeline stages in their declared execution order.

Later stages read earlier outputs through ``StageContext.output`` and
``StageContext.by_project``; both return empty collections when an
upstream stage was skipped.
"""

from ..reports import (
    AdoptionBarrierReport,
    AdoptionReport,
    BusinessAlignmentReport,
    CodeQualityReport,
    CollaborationReport,
    CostReport,
    DevOpsMaturityReport,
    LifecycleReport,
    ProjectReport,
    SecurityScanReport,
    TeamReport,
    TechStackReport,
)
from .adoption import compute_adoption
from .barriers import compute_barriers
from .base import Stage, StageContext, run_isolated, run_per_project
from .business import compute_business
from .collaboration import compute_collaboration
from .cost import compute_cost
from .lifecycle import compute_lifecycle
from .maturity import compute_maturity
from .projects import collect_projects
from .quality import compute_quality
from .security import compute_security
from .team import compute_team
from .tech import compute_tech

PROJECTS_STAGE = "projects"

STAGES = [
    Stage("projects", "Project collection", collect_projects, ProjectReport),
    Stage("security_scans", "Security posture", compute_security, SecurityScanReport, requires_security=True),
    Stage("code_quality", "Code quality", compute_quality, CodeQualityReport),
    Stage("cost", "Cost estimate", compute_cost, CostReport),
    Stage("team", "Team activity", compute_team, TeamReport),
    Stage("tech_stack", "Tech stack", compute_tech, TechStackReport, extended=True),
    Stage("lifecycle", "Project lifecycle", compute_lifecycle, LifecycleReport, extended=True),
    Stage("business_alignment", "Business alignment", compute_business, BusinessAlignmentReport, extended=True),
    Stage("adoption", "Feature adoption", compute_adoption, AdoptionReport, extended=True),
    Stage("collaboration", "Collaboration", compute_collaboration, CollaborationReport, extended=True),
    Stage("devops_maturity", "DevOps maturity", compute_maturity, DevOpsMaturityReport, extended=True),
    Stage("adoption_barriers", "Adoption barriers", compute_barriers, AdoptionBarrierReport, extended=True),
]

STAGE_NAMES = [stage.name for stage in STAGES]

__all__ = [
    "PROJECTS_STAGE",
    "STAGES",
    "STAGE_NAMES",
    "Stage",
    "StageContext",
    "run_isolated",
    "run_per_project",
]
