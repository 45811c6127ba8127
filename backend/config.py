import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def _get_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return None
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class EngineConfig:
    # Bounded collectors
    reservoir_capacity: int = 2000
    year_sample_capacity: int = 500
    project_sample_capacity: int = 50
    recent_tx_capacity: int = 500
    rental_median_capacity: int = 5000

    # Retained store caps (newest records are kept)
    max_sales_records: int = 150_000
    max_rental_records: int = 80_000

    # Project-detail cache entries
    project_cache_size: int = 20

    # Rolling "current" window: narrowest of 3/6/12 months with this many records
    rolling_min_records: int = 20

    cagr_window_years: int = 5

    # Fixed seed makes sampling reproducible; None draws from system entropy
    random_seed: Optional[int] = None

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """Build config from ENGINE_* environment variables (and .env)."""
        return cls(
            reservoir_capacity=_get_int('ENGINE_RESERVOIR_CAPACITY', 2000),
            year_sample_capacity=_get_int('ENGINE_YEAR_SAMPLE_CAPACITY', 500),
            project_sample_capacity=_get_int('ENGINE_PROJECT_SAMPLE_CAPACITY', 50),
            recent_tx_capacity=_get_int('ENGINE_RECENT_TX_CAPACITY', 500),
            rental_median_capacity=_get_int('ENGINE_RENTAL_MEDIAN_CAPACITY', 5000),
            max_sales_records=_get_int('ENGINE_MAX_SALES_RECORDS', 150_000),
            max_rental_records=_get_int('ENGINE_MAX_RENTAL_RECORDS', 80_000),
            project_cache_size=_get_int('ENGINE_PROJECT_CACHE_SIZE', 20),
            rolling_min_records=_get_int('ENGINE_ROLLING_MIN_RECORDS', 20),
            cagr_window_years=_get_int('ENGINE_CAGR_WINDOW_YEARS', 5),
            random_seed=_get_optional_int('ENGINE_RANDOM_SEED'),
        )
