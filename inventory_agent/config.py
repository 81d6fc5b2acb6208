"""Configuration management for the Inventory Agent."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from .visitor import AggregationFlags

# Multi-tenant SaaS hosts where listing every group on the instance is meaningless.
PUBLIC_INSTANCE_HOSTS = {"gitlab.com", "www.gitlab.com"}


class ConfigError(ValueError):
    """Invalid or incomplete configuration; the run cannot start."""


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class InventoryConfig:
    """Configuration for the GitLab Inventory Agent."""

    # Required settings
    gitlab_base_url: str
    gitlab_token: str

    # Exactly one target: a single group, a file of groups, or every group
    group: Optional[str] = None
    groups_file: Optional[str] = None
    all_groups: bool = False

    # Optional settings with defaults
    output_dir: str = "./output"
    per_page: int = 100
    workers: int = 1
    timeout: int = 30
    connect_timeout: int = 10
    max_retries: int = 5
    max_concurrent_requests: int = 4
    verify_ssl: bool = True
    log_level: str = "INFO"

    # Aggregation flags
    include_notes: bool = False
    include_commit_comments: bool = False
    include_repo_size: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.gitlab_base_url:
            raise ConfigError("gitlab_base_url is required")
        if not self.gitlab_token:
            raise ConfigError("gitlab_token is required")

        self.gitlab_base_url = self.gitlab_base_url.rstrip("/")
        self.output_dir = os.path.expanduser(self.output_dir)

        if self.group == "":
            self.group = None
        if self.groups_file == "":
            self.groups_file = None

        targets = [self.group is not None, self.groups_file is not None, self.all_groups]
        if sum(targets) == 0:
            raise ConfigError("a target is required: a group, a groups file, or all groups")
        if sum(targets) > 1:
            raise ConfigError("choose only one of group, groups file, or all groups")

        if self.all_groups and self.is_public_instance:
            raise ConfigError(
                f"scanning all groups is only supported on self-hosted instances, not {self.gitlab_base_url}"
            )
        if not 1 <= self.per_page <= 100:
            raise ConfigError(f"per_page must be between 1 and 100, got {self.per_page}")
        if self.workers < 1:
            raise ConfigError(f"workers must be at least 1, got {self.workers}")

    @property
    def is_public_instance(self) -> bool:
        """Return True for the public multi-tenant GitLab instance."""
        host = (urlparse(self.gitlab_base_url).hostname or "").lower()
        return host in PUBLIC_INSTANCE_HOSTS

    @property
    def target_label(self) -> str:
        """Short label for the target, used in output file names."""
        if self.all_groups:
            return "all-groups"
        if self.groups_file:
            return Path(self.groups_file).stem
        return self.group or "run"

    @property
    def flags(self) -> AggregationFlags:
        return AggregationFlags(
            notes=self.include_notes,
            commit_comments=self.include_commit_comments,
            repo_size=self.include_repo_size,
        )

    @classmethod
    def from_env(cls, **overrides) -> "InventoryConfig":
        """Create configuration from environment variables with optional overrides."""
        load_dotenv()

        try:
            config_dict = {
                "gitlab_base_url": os.getenv("GITLAB_BASE_URL", ""),
                "gitlab_token": os.getenv("GITLAB_TOKEN", ""),
                "group": os.getenv("GITLAB_GROUP") or None,
                "groups_file": os.getenv("GITLAB_GROUPS_FILE") or None,
                "all_groups": _env_bool("GITLAB_ALL_GROUPS"),
                "output_dir": os.getenv("OUTPUT_DIR", "./output"),
                "per_page": int(os.getenv("PER_PAGE", "100")),
                "workers": int(os.getenv("WORKERS", "1")),
                "timeout": int(os.getenv("TIMEOUT", "30")),
                "connect_timeout": int(os.getenv("CONNECT_TIMEOUT", "10")),
                "max_retries": int(os.getenv("MAX_RETRIES", "5")),
                "max_concurrent_requests": int(os.getenv("MAX_CONCURRENT_REQUESTS", "4")),
                "verify_ssl": _env_bool("VERIFY_SSL", "true"),
                "log_level": os.getenv("LOG_LEVEL", "INFO"),
                "include_notes": _env_bool("INCLUDE_NOTES"),
                "include_commit_comments": _env_bool("INCLUDE_COMMIT_COMMENTS"),
                "include_repo_size": _env_bool("INCLUDE_REPO_SIZE"),
            }
        except ValueError as e:
            raise ConfigError(f"invalid numeric setting in environment: {e}") from e

        # A target given on the command line replaces whatever the environment chose
        if any(overrides.get(key) for key in ("group", "groups_file", "all_groups")):
            config_dict.update(group=None, groups_file=None, all_groups=False)

        # Apply overrides (filter out None values from CLI)
        for key, value in overrides.items():
            if value is not None:
                config_dict[key] = value

        return cls(**config_dict)
