"""
Runtime configuration for the intake core.

Reference lists (nationalities, languages, countries) live here and are passed
explicitly to the components that need them instead of being read from
module-level globals.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple

from .env import load_env

DEFAULT_DEBOUNCE_MS = 300
DEFAULT_DUPLICATE_THRESHOLD = 70.0
DEFAULT_SEARCH_LIMIT = 20
DEFAULT_API_TIMEOUT = 30.0

DEFAULT_NATIONALITIES: Tuple[str, ...] = ("MG", "FR", "ZA", "MU", "KM", "RE")
DEFAULT_LANGUAGES: Tuple[str, ...] = ("MG", "FR", "EN")
DEFAULT_COUNTRIES: Tuple[str, ...] = ("MG", "FR", "ZA", "MU", "KM", "RE")
DEFAULT_DOCUMENT_TYPES: Tuple[str, ...] = ("MG_ID", "PASSPORT")
DEFAULT_PERSON_NATURES: Tuple[str, ...] = ("MALE", "FEMALE")


@dataclass(frozen=True)
class ReferenceData:
    """Read-only lookup lists handed to validators as context."""

    nationalities: Tuple[str, ...] = DEFAULT_NATIONALITIES
    languages: Tuple[str, ...] = DEFAULT_LANGUAGES
    countries: Tuple[str, ...] = DEFAULT_COUNTRIES
    document_types: Tuple[str, ...] = DEFAULT_DOCUMENT_TYPES
    person_natures: Tuple[str, ...] = DEFAULT_PERSON_NATURES


@dataclass(frozen=True)
class IntakeConfig:
    """Immutable settings shared by the scheduler, resolver and adapters."""

    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    duplicate_threshold: float = DEFAULT_DUPLICATE_THRESHOLD
    search_limit: int = DEFAULT_SEARCH_LIMIT
    api_base_url: Optional[str] = None
    api_timeout: float = DEFAULT_API_TIMEOUT
    api_token: Optional[str] = None
    log_level: str = "INFO"
    log_dir: Optional[Path] = None
    reference: ReferenceData = field(default_factory=ReferenceData)

    def __post_init__(self):
        if self.debounce_ms < 0:
            raise ValueError("debounce_ms must be >= 0")
        if not 0.0 <= self.duplicate_threshold <= 100.0:
            raise ValueError("duplicate_threshold must be within [0, 100]")
        if self.search_limit <= 0:
            raise ValueError("search_limit must be positive")

    def with_overrides(self, **changes) -> "IntakeConfig":
        return replace(self, **changes)

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "IntakeConfig":
        """
        Build a config from INTAKE_* environment variables.

        A .env file is loaded first when present. Unset variables keep
        their defaults.
        """
        load_env(env_path)
        log_dir = os.getenv("INTAKE_LOG_DIR")
        return cls(
            debounce_ms=int(os.getenv("INTAKE_DEBOUNCE_MS", DEFAULT_DEBOUNCE_MS)),
            duplicate_threshold=float(
                os.getenv("INTAKE_DUPLICATE_THRESHOLD", DEFAULT_DUPLICATE_THRESHOLD)
            ),
            search_limit=int(os.getenv("INTAKE_SEARCH_LIMIT", DEFAULT_SEARCH_LIMIT)),
            api_base_url=os.getenv("INTAKE_API_BASE_URL") or None,
            api_timeout=float(os.getenv("INTAKE_API_TIMEOUT", DEFAULT_API_TIMEOUT)),
            api_token=os.getenv("INTAKE_API_TOKEN") or None,
            log_level=os.getenv("INTAKE_LOG_LEVEL", "INFO"),
            log_dir=Path(log_dir) if log_dir else None,
        )
