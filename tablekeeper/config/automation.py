"""Table automation configuration.

Groups the settings of the calculation subsystem (queue, worker pool,
snapshots, health thresholds) into plain dataclasses so the services can be
built without touching environment variables.
"""

from dataclasses import dataclass, field
from typing import Any

from tablekeeper.config.settings import Settings, get_settings


@dataclass
class QueueConfig:
    """Calculation queue and worker pool parameters."""
    worker_count: int = 3
    max_size: int = 100
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_jitter: float = 0.1
    job_timeout: float = 30.0
    io_timeout: float = 10.0
    stuck_job_timeout: float = 30.0
    poll_interval: float = 0.5
    maintenance_interval: float = 5.0
    max_completed_jobs: int = 100
    max_failed_jobs: int = 50


@dataclass
class SnapshotRetention:
    """Snapshot pruning policy."""
    max_age_days: int = 30
    keep_per_table: int = 10


@dataclass
class HealthThresholds:
    """Thresholds for the standings health classification."""
    pending_degraded: int = 20
    pending_unhealthy: int = 50
    failure_rate_degraded: float = 0.2
    failure_rate_unhealthy: float = 0.5
    recent_failures: int = 10

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HealthThresholds":
        """Build thresholds from a defaults.yaml section, ignoring unknown keys."""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class AutomationConfig:
    """Complete table automation configuration."""

    enabled: bool = True
    cache_enabled: bool = True
    cache_ttl: int = 300
    calculation_warning_ms: float = 2000.0

    queue: QueueConfig = field(default_factory=QueueConfig)
    snapshots: SnapshotRetention = field(default_factory=SnapshotRetention)
    health: HealthThresholds = field(default_factory=HealthThresholds)

    # Default priority per trigger source
    priorities: dict[str, str] = field(default_factory=lambda: {
        "match_result": "normal",
        "manual": "high",
        "scheduled": "low",
    })

    @classmethod
    def from_settings(cls, settings: Settings) -> "AutomationConfig":
        """Derive the automation config from settings and defaults.yaml."""
        defaults = settings.load_defaults_config()
        config = cls(
            enabled=settings.automation_enabled,
            cache_enabled=settings.table_cache_enabled,
            cache_ttl=settings.table_cache_ttl,
            calculation_warning_ms=settings.calculation_warning_ms,
            queue=QueueConfig(
                worker_count=settings.worker_count,
                max_size=settings.queue_max_size,
                max_attempts=settings.queue_max_attempts,
                retry_base_delay=settings.retry_base_delay,
                retry_max_delay=settings.retry_max_delay,
                retry_jitter=settings.retry_jitter,
                job_timeout=settings.job_timeout,
                io_timeout=settings.io_timeout,
                stuck_job_timeout=settings.effective_stuck_job_timeout,
                poll_interval=settings.worker_poll_interval,
                maintenance_interval=settings.maintenance_interval,
                max_completed_jobs=settings.max_completed_jobs,
                max_failed_jobs=settings.max_failed_jobs,
            ),
            snapshots=SnapshotRetention(
                max_age_days=settings.snapshot_max_age_days,
                keep_per_table=settings.snapshot_keep_per_table,
            ),
            health=HealthThresholds.from_dict(defaults.get("health", {})),
        )
        config.priorities.update(defaults.get("priorities", {}))
        return config

    def priority_for(self, trigger: str) -> str:
        """Get the default priority for a trigger source, with fallback to normal."""
        return self.priorities.get(trigger.lower(), "normal")


def get_automation_config() -> AutomationConfig:
    """Get the automation configuration for the current settings."""
    return AutomationConfig.from_settings(get_settings())
