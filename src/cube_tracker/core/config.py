"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cube_tracker.core.types import ArucoDictionary, BoardGeometry


class MarkerSettings(BaseSettings):
    """Marker cube geometry settings."""

    model_config = SettingsConfigDict(env_prefix="MARKER_")

    marker_length: float = 0.065
    cube_size: float = 0.07
    dictionary: ArucoDictionary = ArucoDictionary.DICT_4X4_50
    board_geometry: BoardGeometry = BoardGeometry.SIMPLE_CUBE
    marker_ids: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4, 5])


class SolverSettings(BaseSettings):
    """Rigid pose solver parameters."""

    model_config = SettingsConfigDict(env_prefix="SOLVER_")

    method: Literal["power", "eigh"] = "power"
    power_iterations: int = 30
    max_rms_error: float | None = 0.02
    max_reprojection_px: float | None = 5.0


class FilterSettings(BaseSettings):
    """One-Euro filter parameters for pose smoothing."""

    model_config = SettingsConfigDict(env_prefix="FILTER_")

    position_min_cutoff: float = 1.0
    position_beta: float = 0.1
    rotation_min_cutoff: float = 1.0
    rotation_beta: float = 0.1
    error_min_cutoff: float = 1.0
    error_beta: float = 0.0
    derivative_cutoff: float = 1.0
    weak_geometry_marker_count: int = 2
    weak_geometry_scale: float = 0.5


class VisibilitySettings(BaseSettings):
    """Visibility-driven actuation state machine parameters."""

    model_config = SettingsConfigDict(env_prefix="VISIBILITY_")

    watched_marker_ids: list[int] = Field(default_factory=lambda: [6])
    confirmation_frames: int = 3
    smoothing: float = 0.5
    animation_duration: float = 0.3
    frozen_duration: float = 0.1
    closed_angle_deg: float = -90.0
    open_angle_deg: float = -45.0


class TrackingSettings(BaseSettings):
    """Per-frame tracking loop settings."""

    model_config = SettingsConfigDict(env_prefix="TRACKING_")

    stale_after_frames: int = 15
    secondary_enabled: bool = True
    secondary_id_offset: int = 6
    min_image_size: int = 32
    image_solver: Literal["lift", "pnp"] = "lift"


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = "INFO"
    file: str | None = None
    quiet_modules: list[str] = Field(default_factory=list)


class Settings(BaseSettings):
    """Root settings aggregating all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    marker: MarkerSettings = Field(default_factory=MarkerSettings)
    solver: SolverSettings = Field(default_factory=SolverSettings)
    filter: FilterSettings = Field(default_factory=FilterSettings)
    visibility: VisibilitySettings = Field(default_factory=VisibilitySettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings instance."""
    return Settings()
