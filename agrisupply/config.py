"""Application configuration management."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .catalog import ALLOWED_COUNTRIES, OVERPASS_ENDPOINTS


class Settings(BaseSettings):
    """Environment-driven application settings."""

    model_config = SettingsConfigDict(env_prefix="AGRISUPPLY_", env_file=".env", extra="ignore")

    dataset_base_url: str = "http://localhost:8080/data/"
    dataset_timeout_s: float = 30.0
    dataset_workers: int = Field(default=4, ge=1)
    allowed_countries: List[str] = Field(default_factory=lambda: sorted(ALLOWED_COUNTRIES))

    overpass_endpoints: List[str] = Field(default_factory=lambda: list(OVERPASS_ENDPOINTS))
    overpass_query_timeout_s: int = 90
    overpass_http_timeout_s: float = 120.0
    overpass_max_attempts: int = Field(default=4, ge=1)
    overpass_backoff_base_s: float = 1.5
    overpass_backoff_cap_s: float = 9.0
    overpass_jitter_s: float = 0.4

    default_radius_km: float = 2.0
    cache_bbox_precision: int = 4
    simplify_tolerance_deg: float = 0.0
    required_kg_n_per_ha: float = 160.0
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()
