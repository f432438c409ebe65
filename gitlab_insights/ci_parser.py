"""CI Profile Parser - Extract features from .gitlab-ci.yml content."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# Reserved GitLab CI keys (not job names)
RESERVED_KEYS = {
    "default", "include", "stages", "variables", "workflow",
    "before_script", "after_script", "image", "services", "cache",
    ".pre", ".post",
}

INCLUDE_KEYS = ("local", "remote", "project", "template", "file", "component")

# Scanner name -> substrings identifying its template, component or job
SECURITY_SCANNERS = {
    "sast": ("sast",),
    "dependency_scanning": ("dependency-scanning", "dependency_scanning", "gemnasium"),
    "secret_detection": ("secret-detection", "secret_detection"),
    "container_scanning": ("container-scanning", "container_scanning"),
    "dast": ("dast",),
}


class _CILoader(yaml.SafeLoader):
    """SafeLoader that tolerates GitLab-specific tags such as ``!reference``."""


def _ignore_tag(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Any:
    if isinstance(node, yaml.SequenceNode):
        return loader.construct_sequence(node)
    if isinstance(node, yaml.MappingNode):
        return loader.construct_mapping(node)
    return loader.construct_scalar(node)


_CILoader.add_multi_constructor("!", _ignore_tag)


@dataclass
class CIProfile:
    """CI profile for a project."""
    present: bool = False
    parse_error: bool = False
    job_count: int = 0
    stage_count: int = 0
    include_count: int = 0
    stages: list[str] = field(default_factory=list)
    has_test_jobs: bool = False
    has_deploy_jobs: bool = False
    uses_environments: bool = False
    uses_docker_in_docker: bool = False
    security_scanners: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "present": self.present,
            "parse_error": self.parse_error,
            "job_count": self.job_count,
            "stage_count": self.stage_count,
            "include_count": self.include_count,
            "stages": list(self.stages),
            "has_test_jobs": self.has_test_jobs,
            "has_deploy_jobs": self.has_deploy_jobs,
            "uses_environments": self.uses_environments,
            "uses_docker_in_docker": self.uses_docker_in_docker,
            "security_scanners": list(self.security_scanners),
        }


def _include_refs(include: Any) -> list[str]:
    """Flatten an ``include:`` value into the referenced file/template strings."""
    if include is None:
        return []
    if isinstance(include, str):
        return [include]
    if isinstance(include, dict):
        return [str(v) for k, v in include.items() if k in INCLUDE_KEYS]
    if isinstance(include, list):
        refs: list[str] = []
        for item in include:
            refs.extend(_include_refs(item))
        return refs
    return []


def _detect_scanners(names: list[str]) -> list[str]:
    lowered = [name.lower() for name in names]
    found = []
    for scanner, needles in SECURITY_SCANNERS.items():
        if any(needle in name for name in lowered for needle in needles):
            found.append(scanner)
    return found


def parse_ci_content(content: str | None) -> CIProfile:
    """
    Parse .gitlab-ci.yml content and extract a CI profile.

    Malformed YAML still yields a profile marked ``present`` with
    ``parse_error`` set, so a broken pipeline file is distinguishable
    from a missing one.

    Args:
        content: Raw content of .gitlab-ci.yml

    Returns:
        CIProfile with detected features
    """
    profile = CIProfile()
    if not content or not content.strip():
        return profile

    profile.present = True
    try:
        config = yaml.load(content, Loader=_CILoader)
    except yaml.YAMLError as e:
        logger.debug(f"Unparseable CI configuration: {e}")
        profile.parse_error = True
        profile.security_scanners = _detect_scanners([content])
        return profile

    if not isinstance(config, dict):
        profile.parse_error = True
        return profile

    includes = _include_refs(config.get("include"))
    profile.include_count = len(includes)

    declared_stages = config.get("stages")
    if isinstance(declared_stages, list):
        profile.stages = [str(s) for s in declared_stages]

    jobs = {
        name: body for name, body in config.items()
        if name not in RESERVED_KEYS and not str(name).startswith(".") and isinstance(body, dict)
    }
    profile.job_count = len(jobs)

    job_stages = set(profile.stages)
    for name, body in jobs.items():
        stage = str(body.get("stage", "test"))
        job_stages.add(stage)
        lowered_name = str(name).lower()
        if stage == "test" or "test" in lowered_name:
            profile.has_test_jobs = True
        if "deploy" in stage.lower() or "deploy" in lowered_name:
            profile.has_deploy_jobs = True
        if body.get("environment"):
            profile.uses_environments = True
            profile.has_deploy_jobs = True
        services = body.get("services") or []
        if any("dind" in str(service) for service in services):
            profile.uses_docker_in_docker = True

    global_services = config.get("services") or []
    if any("dind" in str(service) for service in global_services):
        profile.uses_docker_in_docker = True

    profile.stage_count = len(job_stages) if jobs else len(profile.stages)
    profile.security_scanners = _detect_scanners(includes + [str(name) for name in jobs])
    return profile
