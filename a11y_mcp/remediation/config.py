"""Configuration for the remediation engine."""

import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field

from .models import RemediationOptions

logger = logging.getLogger(__name__)


@dataclass
class LLMConfig:
    """Settings for the LLM completion workers."""
    model: str | None = None  # None -> A11Y_MODEL env var or default
    timeout: int | None = None  # None -> LLM_TIMEOUT env var or default


@dataclass
class SafetyConfig:
    """Guards applied before patches are written to disk."""
    require_clean_git: bool = True
    max_file_size_kb: int = 500
    backup_retention_days: int = 7


@dataclass
class RemediationConfig:
    """Main configuration for remediation runs."""
    concurrency_limit: int = 3
    per_job_timeout: float = 60.0
    max_attempts: int = 3
    group_by_type: bool = True
    prioritize: bool = True
    conflict_strategy: str = "merge"
    include_validation: bool = True

    # Scheduler tuning
    worker_count: int | None = None  # None -> one worker per concurrency slot
    rate_limit_calls: int = 60
    rate_limit_window: float = 60.0
    backoff_base: float = 1.0
    backoff_cap: float = 30.0
    dependency_poll_interval: float = 0.1
    dependency_poll_limit: int = 3000
    drain_on_cancel: bool = True

    llm: LLMConfig = field(default_factory=LLMConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)

    def to_options(self, **overrides) -> RemediationOptions:
        """Build per-run options, letting non-None overrides win."""
        values = {
            "concurrency_limit": self.concurrency_limit,
            "per_job_timeout": self.per_job_timeout,
            "max_attempts": self.max_attempts,
            "group_by_type": self.group_by_type,
            "prioritize": self.prioritize,
            "conflict_strategy": self.conflict_strategy,
            "include_validation": self.include_validation,
        }
        values.update({k: v for k, v in overrides.items() if v is not None and k in values})
        return RemediationOptions(**values)


def load_config(project_root: Path) -> RemediationConfig:
    """Load configuration from .a11y/config.yaml.

    The ``remediation`` section is used when present, otherwise the whole
    file.

    Args:
        project_root: Project root directory

    Returns:
        RemediationConfig object (with defaults if file missing)
    """
    config_file = project_root / ".a11y" / "config.yaml"

    if not config_file.exists():
        return RemediationConfig()

    try:
        content = yaml.safe_load(config_file.read_text())
        if not content:
            return RemediationConfig()

        data = content.get("remediation", content)
        defaults = RemediationConfig()

        llm_data = data.get("llm", {}) or {}
        safety_data = data.get("safety", {}) or {}

        return RemediationConfig(
            concurrency_limit=data.get("concurrency_limit", defaults.concurrency_limit),
            per_job_timeout=data.get("per_job_timeout", defaults.per_job_timeout),
            max_attempts=data.get("max_attempts", defaults.max_attempts),
            group_by_type=data.get("group_by_type", defaults.group_by_type),
            prioritize=data.get("prioritize", defaults.prioritize),
            conflict_strategy=data.get("conflict_strategy", defaults.conflict_strategy),
            include_validation=data.get("include_validation", defaults.include_validation),
            worker_count=data.get("worker_count", defaults.worker_count),
            rate_limit_calls=data.get("rate_limit_calls", defaults.rate_limit_calls),
            rate_limit_window=data.get("rate_limit_window", defaults.rate_limit_window),
            backoff_base=data.get("backoff_base", defaults.backoff_base),
            backoff_cap=data.get("backoff_cap", defaults.backoff_cap),
            dependency_poll_interval=data.get("dependency_poll_interval", defaults.dependency_poll_interval),
            dependency_poll_limit=data.get("dependency_poll_limit", defaults.dependency_poll_limit),
            drain_on_cancel=data.get("drain_on_cancel", defaults.drain_on_cancel),
            llm=LLMConfig(
                model=llm_data.get("model"),
                timeout=llm_data.get("timeout"),
            ),
            safety=SafetyConfig(
                require_clean_git=safety_data.get("require_clean_git", True),
                max_file_size_kb=safety_data.get("max_file_size_kb", 500),
                backup_retention_days=safety_data.get("backup_retention_days", 7),
            ),
        )

    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse config file {config_file}: {e}. Using defaults.")
        return RemediationConfig()
    except (AttributeError, TypeError) as e:
        logger.warning(f"Malformed remediation config in {config_file}: {e}. Using defaults.")
        return RemediationConfig()
