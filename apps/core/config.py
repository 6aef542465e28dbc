from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, Tuple


class Settings(BaseSettings):
    """Application settings for the spot discovery service."""

    # Environment
    environment: str = "development"

    # Place intelligence proxy - explicit endpoint wins over the derived one
    place_intel_endpoint: str = ""
    functions_project_id: str = ""
    functions_region: str = "us-central1"
    place_intel_auth_token: Optional[str] = None
    external_signal_timeout_s: float = 2.4
    intelligence_ttl_s: int = 15 * 60

    # Remote query planning
    max_remote_filters: int = 3
    spot_query_limit: int = 90
    spot_fallback_limit: int = 140
    remote_checkin_limit: int = 140

    # Aggregation
    presence_horizon_s: int = 2 * 60 * 60
    nearby_threshold_km: float = 40.0
    default_map_center: Tuple[float, float] = (39.83, -98.58)

    # Document store seed (YAML or JSON with `spots` and `checkins` maps)
    document_store_seed_path: str = ""

    # Local cache substrate
    cache_database_url: str = "sqlite:///./discovery_cache.db"
    local_checkins_ttl_s: int = 7 * 24 * 60 * 60

    # Config cache
    config_cache_ttl_s: int = 300

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def resolve_place_intel_endpoint(self) -> str:
        """Explicit endpoint, else the cloud functions proxy URL, else empty."""
        if self.place_intel_endpoint:
            return self.place_intel_endpoint
        if not self.functions_project_id:
            return ""
        return (
            f"https://{self.functions_region}-{self.functions_project_id}"
            ".cloudfunctions.net/placeSignalsProxy"
        )


settings = Settings()
