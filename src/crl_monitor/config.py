"""
Settings for a monitor run, read once at startup.

pydantic-settings reads the process environment, then a .env file, then falls
back to the field defaults; values are type-checked and the resulting object is
frozen.

Only AppSettings is a BaseSettings instance. Sub-settings are plain BaseModel
classes populated via env_nested_delimiter="__", so FEED__URL maps to
feed.url and SCHEDULER__CRON maps to scheduler.cron.

Command line flags are applied on top as constructor overrides, which take
precedence over every other source.
"""

from __future__ import annotations

from pathlib import Path

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from crl_monitor.domain.models import LintSeverity

# .env lives at the project root, independent of the working directory.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

CCADB_INTERMEDIATES_REPORT = (
    "https://ccadb.my.salesforce-sites.com/mozilla/MozillaIntermediateCertsCSVReport"
)


class FeedSettings(BaseModel):
    """CCADB intermediate certificate report (CSV)."""

    url: str = Field(default=CCADB_INTERMEDIATES_REPORT, description="CSV report URL")
    timeout: float = Field(default=120, gt=0, description="Download timeout in seconds")


class SchedulerSettings(BaseModel):
    """
    Watch mode schedule, a standard 5-field cron expression.

    Format: minute hour day-of-month month day-of-week
    Examples:
      "0 */6 * * *"  every 6 hours (default)
      "30 2 * * *"   daily at 02:30
    """

    cron: str = Field(
        default="0 */6 * * *",
        description="Cron expression (5 fields: minute hour dom month dow)",
    )

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        """Require 5 fields that APScheduler accepts."""
        fields = value.strip().split()
        if len(fields) != 5:
            raise ValueError(
                f"Cron expression must have exactly 5 fields "
                f"(minute hour dom month dow), got {len(fields)}: {value!r}"
            )
        cron = " ".join(fields)
        try:
            CronTrigger.from_crontab(cron)
        except ValueError as e:
            raise ValueError(f"Invalid cron expression {cron!r}: {e}") from e
        return cron


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first):
      1. Constructor arguments (command line flags)
      2. Environment variables
      3. .env file
      4. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    trust_store_path: Path = Field(default=Path("intermediates.pem"))
    cache_root: Path = Field(default=Path("crls"))
    fetch_timeout: float = Field(default=30, gt=0)
    fetch_workers: int = Field(default=16, ge=1, le=256)

    lint_severity_threshold: LintSeverity = Field(default=LintSeverity.WARN)
    lint_rule_filter: str = Field(default="ca_crl", min_length=1)
    show_lint_errors: bool = Field(default=False)

    run_update: bool = Field(default=True)
    run_check: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    feed: FeedSettings = Field(default_factory=lambda: FeedSettings())
    scheduler: SchedulerSettings = Field(default_factory=lambda: SchedulerSettings())

    @field_validator("lint_severity_threshold", mode="before")
    @classmethod
    def parse_severity(cls, value: object) -> object:
        """Accept "warn", "WARN", "Warn" as well as LintSeverity members."""
        if isinstance(value, str):
            return LintSeverity.parse(value)
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level {value!r}")
        return level
