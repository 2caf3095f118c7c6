"""
ordertrace configuration

Uses pydantic-settings for type-safe environment variable loading.
Variables are prefixed with ORDERTRACE_, e.g. ORDERTRACE_SLA_PO_HOURS=24.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Find .env file: check CWD first, then the project root
_env_file = Path(".env")
if not _env_file.exists():
    _parent_env = Path(__file__).resolve().parent.parent.parent / ".env"
    if _parent_env.exists():
        _env_file = _parent_env


class Settings(BaseSettings):
    """Default SLA thresholds, overridable per deployment."""

    # Purchase order must exist this many hours after the sale
    sla_po_hours: float = 12
    # Yellow customs alert after this many days; red is fixed at 6
    sla_customs_days: float = 4
    battery_extra_days: float = 3
    two_person_rule: bool = False

    model_config = {
        "env_prefix": "ORDERTRACE_",
        "env_file": str(_env_file),
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
