"""Audit engine configuration — roles, scope guard, paging, scheduling."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///data/audits.db"

    # Access control (comma-separated role names)
    privileged_roles: str = "ADMIN"  # May update/delete/see any definition
    creator_roles: str = "ADMIN,INVENTORY_MANAGER"  # May create definitions

    # Scope guard: asset statuses never included in a run snapshot
    disposed_statuses: str = "Disposed"

    # Pagination
    definition_page_limit: int = 50
    run_page_limit: int = 20
    recent_runs_limit: int = 10  # Runs returned with a single definition
    max_page_limit: int = 200

    # Runs
    reject_overlapping_runs: bool = False  # True = refuse trigger while a run is pending/in_progress

    # Background scheduling (due triggers + daily reminder sweep)
    scheduler_enabled: bool = True
    scheduler_check_interval_minutes: float = 60.0

    # Reminders
    reminder_email_template: str = "audit_reminder"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()


def _split(raw: str) -> frozenset[str]:
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def get_privileged_roles() -> frozenset[str]:
    """Parse comma-separated privileged roles from settings."""
    return _split(settings.privileged_roles)


def get_creator_roles() -> frozenset[str]:
    """Parse comma-separated creator roles from settings."""
    return _split(settings.creator_roles)


def get_disposed_statuses() -> frozenset[str]:
    """Parse comma-separated disposed asset statuses from settings."""
    return _split(settings.disposed_statuses)
