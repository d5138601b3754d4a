from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ALLOWED_SPEED_MULTIPLIERS = (1, 2, 4, 8, 16, 32)


class SimulationSettings(BaseSettings):
    speed_multiplier: int = Field(default=1, ge=1, le=32)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["text", "json"] = "text"
    environment: str = "development"

    # Meeting-phase hand-off
    auto_depart: bool = Field(
        default=False,
        description="Continue to the destination without waiting for departure confirmation",
    )

    model_config = SettingsConfigDict(env_prefix="SIM_")

    @field_validator("speed_multiplier")
    @classmethod
    def validate_speed(cls, v: int) -> int:
        if v not in ALLOWED_SPEED_MULTIPLIERS:
            raise ValueError(f"Speed multiplier must be one of {ALLOWED_SPEED_MULTIPLIERS}")
        return v


class OSRMSettings(BaseSettings):
    base_url: str = "http://router.project-osrm.org"
    profile: Literal["driving", "cycling", "walking"] = "driving"
    timeout: float = Field(default=5.0, gt=0.0, le=60.0)
    geometry_format: Literal["geojson", "polyline"] = "geojson"

    # Retry configuration (attempts before the straight-line fallback)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_base_delay: float = Field(default=0.25, ge=0.0, le=5.0)
    retry_multiplier: float = Field(default=2.0, ge=1.0, le=5.0)

    cache_size: int = Field(
        default=1024,
        ge=0,
        description="Maximum cached paths per provider, 0 disables caching",
    )

    model_config = SettingsConfigDict(env_prefix="OSRM_")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("OSRM base URL must start with http:// or https://")
        return v.rstrip("/")


class APISettings(BaseSettings):
    key: str = ""
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    model_config = SettingsConfigDict(env_prefix="API_")

    @model_validator(mode="after")
    def validate_credentials_provided(self) -> "APISettings":
        if not self.key:
            raise ValueError("Required credential not provided: API_KEY")
        return self


class CORSSettings(BaseSettings):
    origins: str = "http://localhost:5173,http://localhost:3000"

    model_config = SettingsConfigDict(env_prefix="CORS_")


class Settings(BaseSettings):
    simulation: SimulationSettings = Field(default_factory=SimulationSettings)
    osrm: OSRMSettings = Field(default_factory=OSRMSettings)
    api: APISettings = Field(default_factory=APISettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables."""
    return Settings()
