"""Configuration management for GitLab Insights."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .types import RunSignature


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class InsightsConfig:
    """Configuration for an analysis run."""

    # Required settings
    gitlab_url: str
    gitlab_token: str

    # Optional - restrict the analysis to one group (path or ID, includes subgroups)
    group: Optional[str] = None

    # Run signature inputs
    lookback_days: int = 360
    include_security: bool = True
    all_reports: bool = True

    # Output and resume
    output_dir: str = "./output"
    force_restart: bool = False
    max_projects: int = 0  # 0 = no limit

    # HTTP client
    timeout: int = 120
    verify_ssl: bool = True
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    min_request_interval: float = 0.2
    calls_per_minute: int = 600
    per_page: int = 100
    max_pages: int = 100

    # Per-project fan-out inside a stage (1 = sequential)
    max_workers: int = 1

    # Scoring policy overrides (YAML file)
    scoring_policy: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[str] = None

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.gitlab_url:
            raise ValueError("gitlab_url is required")
        if not self.gitlab_token:
            raise ValueError("gitlab_token is required")
        if not self.gitlab_url.startswith(("http://", "https://")):
            raise ValueError(f"gitlab_url must start with http:// or https://: {self.gitlab_url}")
        if self.lookback_days <= 0:
            raise ValueError("lookback_days must be positive")
        if self.per_page <= 0 or self.per_page > 100:
            raise ValueError("per_page must be between 1 and 100")
        if self.max_pages <= 0:
            raise ValueError("max_pages must be positive")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be positive")

        # Normalize base URL (remove trailing slash and an API suffix)
        self.gitlab_url = self.gitlab_url.rstrip("/")
        if self.gitlab_url.endswith("/api/v4"):
            self.gitlab_url = self.gitlab_url[: -len("/api/v4")]

        self.output_dir = os.path.expanduser(self.output_dir)

        if self.group == "":
            self.group = None

    @property
    def signature(self) -> RunSignature:
        """Inputs that identify this run for checkpoint reuse."""
        return RunSignature(
            instance_url=self.gitlab_url,
            lookback_days=self.lookback_days,
            security_data=self.include_security,
            all_reports=self.all_reports,
        )

    @classmethod
    def from_env(cls, **overrides) -> "InsightsConfig":
        """Create configuration from environment variables with optional overrides."""
        load_dotenv()

        config_dict = {
            "gitlab_url": os.getenv("GITLAB_URL", ""),
            "gitlab_token": os.getenv("GITLAB_TOKEN", ""),
            "group": os.getenv("GITLAB_GROUP") or None,
            "lookback_days": int(os.getenv("LOOKBACK_DAYS", "360")),
            "include_security": _env_bool("INCLUDE_SECURITY", "true"),
            "all_reports": _env_bool("ALL_REPORTS", "true"),
            "output_dir": os.getenv("OUTPUT_DIR", "./output"),
            "force_restart": _env_bool("FORCE_RESTART", "false"),
            "max_projects": int(os.getenv("MAX_PROJECTS", "0")),
            "timeout": int(os.getenv("TIMEOUT", "120")),
            "verify_ssl": _env_bool("VERIFY_SSL", "true"),
            "max_retries": int(os.getenv("MAX_RETRIES", "3")),
            "min_request_interval": float(os.getenv("MIN_REQUEST_INTERVAL", "0.2")),
            "calls_per_minute": int(os.getenv("CALLS_PER_MINUTE", "600")),
            "max_pages": int(os.getenv("MAX_PAGES", "100")),
            "max_workers": int(os.getenv("MAX_WORKERS", "1")),
            "scoring_policy": os.getenv("SCORING_POLICY") or None,
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
            "log_json": _env_bool("LOG_JSON", "false"),
            "log_file": os.getenv("LOG_FILE") or None,
        }

        # Apply overrides (filter out None values from CLI)
        for key, value in overrides.items():
            if value is not None:
                config_dict[key] = value

        return cls(**config_dict)


def ensure_output_dir(config: InsightsConfig) -> Path:
    """
    Ensure the output directory exists and return it as a Path.

    Args:
        config: Insights configuration

    Returns:
        Path object for the output directory
    """
    output_path = Path(config.output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    return output_path
