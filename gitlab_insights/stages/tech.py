"""Tech stack: languages, build tooling and CI shape."""

from __future__ import annotations

from typing import List

from ..reports import ProjectReport, TechStackReport
from .base import StageContext, run_per_project

STAGE = "tech_stack"

BUILD_TOOL_FILES = {
    "package.json": "npm",
    "yarn.lock": "yarn",
    "pnpm-lock.yaml": "pnpm",
    "requirements.txt": "pip",
    "pyproject.toml": "python-build",
    "setup.py": "setuptools",
    "pipfile": "pipenv",
    "poetry.lock": "poetry",
    "pom.xml": "maven",
    "build.gradle": "gradle",
    "build.gradle.kts": "gradle",
    "go.mod": "go",
    "cargo.toml": "cargo",
    "gemfile": "bundler",
    "composer.json": "composer",
    "makefile": "make",
    "cmakelists.txt": "cmake",
}

CONTAINER_FILES = ("dockerfile", "containerfile", "docker-compose.yml", "docker-compose.yaml", "compose.yaml")


def profile_project(ctx: StageContext, project: ProjectReport) -> TechStackReport:
    languages = ctx.client.get_one(f"/projects/{project.project_id}/languages") or {}
    ranked = sorted(
        ((name, float(share)) for name, share in languages.items() if isinstance(share, (int, float))),
        key=lambda item: item[1],
        reverse=True,
    )

    files = [name.lower() for name in ctx.root_files(project)]
    tools = sorted({tool for filename, tool in BUILD_TOOL_FILES.items() if filename in files})
    ci = ctx.ci_profile(project)

    return TechStackReport(
        project_id=project.project_id,
        project_name=project.project_name,
        primary_language=ranked[0][0] if ranked else "",
        languages=";".join(f"{name}:{share:.1f}" for name, share in ranked),
        language_count=len(ranked),
        build_tools=tools,
        has_dockerfile=any(name in files for name in CONTAINER_FILES),
        has_ci=ci.present,
        ci_job_count=ci.job_count,
        ci_stage_count=ci.stage_count,
        uses_includes=ci.include_count > 0,
        uses_docker_in_docker=ci.uses_docker_in_docker,
    )


def compute_tech(ctx: StageContext) -> List[TechStackReport]:
    return run_per_project(ctx, STAGE, TechStackReport, lambda project: profile_project(ctx, project))
