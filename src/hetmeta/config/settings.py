"""Configuration management using Pydantic Settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Analysis settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="HETMETA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # REML estimation
    reml_tol: float = Field(1e-8, gt=0, description="Convergence tolerance on successive tau² iterates")
    reml_max_iter: int = Field(100, ge=1, le=10000)
    strict_convergence: bool = Field(
        False,
        description="Raise NonConvergence instead of reporting the last iterate",
    )

    # Inference
    confidence_level: float = Field(0.95, gt=0, lt=1)

    # Harmonization
    continuity_correction: float = Field(
        0.5,
        ge=0,
        description="Added to every cell of a 2x2 table that contains a zero",
    )

    # Logging
    log_level: str = Field("INFO")
    log_format: str = Field("json", pattern="^(json|text)$")


# Instantiate global settings
settings = Settings()
