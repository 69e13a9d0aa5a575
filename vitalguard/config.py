"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Clinical constants live here, not in scoring code
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from vitalguard.domain.models import RiskLevel, Severity

# Load environment variables from .env file
load_dotenv()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class RiskScoringConfig(BaseModel):
    """Weights and window for the per-patient risk score."""

    window_days: int = Field(default=30, gt=0, description="Trailing window for alerts and vitals")
    severity_weights: dict[Severity, int] = Field(
        default_factory=lambda: {
            Severity.CRITICAL: 25,
            Severity.HIGH: 10,
            Severity.MEDIUM: 5,
            Severity.LOW: 0,
        },
        description="Points added per ACTIVE alert of each severity",
    )
    monitoring_min_readings: int = Field(
        default=14, gt=0, description="Windowed readings needed for the monitoring bonus"
    )
    monitoring_bonus: int = Field(
        default=5, ge=0, description="Points subtracted for consistent monitoring"
    )
    max_score: int = Field(default=100, gt=0, le=100)
    level_floors: dict[RiskLevel, int] = Field(
        default_factory=lambda: {
            RiskLevel.CRITICAL: 75,
            RiskLevel.HIGH: 50,
            RiskLevel.MEDIUM: 25,
        },
        description="Lowest score of each level above LOW",
    )

    @model_validator(mode="after")
    def floors_reachable(self) -> "RiskScoringConfig":
        unreachable = {
            level.value: floor for level, floor in self.level_floors.items() if floor > self.max_score
        }
        if unreachable:
            raise ValueError(f"risk level floors above max_score {self.max_score}: {unreachable}")
        return self


class EngineConfig(BaseModel):
    """Behavioural switches for the ingestion engine."""

    serialize_risk_recompute: bool = Field(
        default=True,
        description="Serialize risk recomputation per patient (False gives last-write-wins)",
    )


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    risk: RiskScoringConfig = Field(default_factory=RiskScoringConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
    v = val.strip().lower()
    if v in {"dev", "development"}:
        return "development"
    if v in {"stage", "staging"}:
        return "staging"
    return "production"


def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
    v = val.strip().upper()
    return cast(
        Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
    )


def _parse_bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    risk_config = RiskScoringConfig(
        window_days=int(os.getenv("RISK_WINDOW_DAYS", "30")),
        monitoring_min_readings=int(os.getenv("RISK_MONITORING_MIN_READINGS", "14")),
    )

    engine_config = EngineConfig(
        serialize_risk_recompute=_parse_bool(os.getenv("SERIALIZE_RISK_RECOMPUTE"), True),
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        logging=logging_config,
        risk=risk_config,
        engine=engine_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def reset_config_cache() -> None:
    get_config.cache_clear()
