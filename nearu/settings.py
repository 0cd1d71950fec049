"""Settings for the NearU backend."""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nearu.domain.proximity.crossings import CrossingPolicy


def _env_field(default, *env_names: str):
    if env_names:
        alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
        return Field(default=default, validation_alias=alias)
    return Field(default=default)


# Test-mode timings: 500ms debounce, 6 minute retention.
TEST_MODE_DEBOUNCE_MS = 500
TEST_MODE_RETENTION_MS = 360_000


class Settings(BaseSettings):
    environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
    service_name: str = _env_field("nearu-api", "SERVICE_NAME")
    git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")
    test_mode: bool = _env_field(False, "NEARU_TEST_MODE")

    # Storage backend: "redis" in deployments, "memory" for local runs.
    document_store: str = _env_field("redis", "DOCUMENT_STORE")
    redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")

    # Identity provider tokens (HS256)
    secret_key: str = _env_field("dev-secret-change-me", "SECRET_KEY")
    jwt_issuer: str = _env_field("nearu-auth", "JWT_ISSUER")
    jwt_audience: str = _env_field("nearu-app", "JWT_AUDIENCE")

    # Sampler
    location_accuracy_threshold_m: float = _env_field(20.0, "LOCATION_ACCURACY_THRESHOLD_M")
    location_min_delta_deg: float = 0.0001
    location_max_age_ms: int = _env_field(60_000, "LOCATION_MAX_AGE_MS")

    # Path crossings
    crossing_max_distance_m: float = _env_field(20.0, "CROSSING_MAX_DISTANCE_M")
    crossing_debounce_ms: int = _env_field(5000, "CROSSING_DEBOUNCE_MS")
    crossing_retention_ms: int = _env_field(3_600_000, "CROSSING_RETENTION_MS")
    required_crossings: int = _env_field(3, "REQUIRED_CROSSINGS")

    # Nearby listing
    nearby_radius_m: float = _env_field(500.0, "NEARBY_RADIUS_M")
    nearby_active_window_ms: int = _env_field(3_600_000, "NEARBY_ACTIVE_WINDOW_MS")

    # Server-side tracking sessions fed by heartbeats
    tracking_idle_seconds: float = _env_field(600.0, "TRACKING_IDLE_SECONDS")

    # Push messaging
    fcm_server_key: Optional[str] = _env_field(None, "FCM_SERVER_KEY")
    fcm_endpoint: str = _env_field("https://fcm.googleapis.com/fcm/send", "FCM_ENDPOINT")
    push_timeout_seconds: float = 5.0

    obs_enabled: bool = _env_field(True, "OBS_ENABLED")
    obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
    obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("obs_log_level", mode="before")
    def _normalise_level(cls, value):  # type: ignore[override]
        return str(value or "INFO").upper()

    @field_validator("document_store", mode="before")
    def _normalise_store(cls, value):  # type: ignore[override]
        text = str(value or "redis").strip().lower()
        if text not in ("redis", "memory"):
            raise ValueError("DOCUMENT_STORE must be 'redis' or 'memory'")
        return text

    # Environment helpers
    def is_prod(self) -> bool:
        return self.environment.lower() in ("prod", "production", "live")

    def is_dev(self) -> bool:
        return self.environment.lower() in ("dev", "development")

    def crossing_policy(self) -> CrossingPolicy:
        """Build the crossing policy, applying test-mode timings when enabled."""
        debounce_ms = self.crossing_debounce_ms
        retention_ms = self.crossing_retention_ms
        if self.test_mode:
            debounce_ms = TEST_MODE_DEBOUNCE_MS
            retention_ms = TEST_MODE_RETENTION_MS
        return CrossingPolicy(
            max_crossing_distance_m=self.crossing_max_distance_m,
            debounce_ms=debounce_ms,
            retention_ms=retention_ms,
            required_crossings=self.required_crossings,
        )


settings = Settings()
