"""
Threshold bands: the evaluator that classifies a reading and the store that
holds the single active configuration.

Each channel owns an ordered tuple of rules. Rules are checked in order and the
first match produces the channel's only finding, so asymmetries between
channels (no advisory tier for diastolic pressure, no upper bound for SpO2)
live in the table rather than in branching code.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

import pydantic
import structlog

from vitalguard.domain.errors import ValidationError
from vitalguard.domain.models import (
    BAND_NAMES,
    ActorContext,
    Finding,
    Measurement,
    MetricType,
    Severity,
    ThresholdBand,
    ThresholdConfig,
)
from vitalguard.services.repository import ThresholdRepository, repository_call

logger = structlog.get_logger(__name__)

Boundary = Literal["min_critical", "min_low", "max_low", "max_critical"]
BOUNDARY_NAMES: frozenset[str] = frozenset({"min_critical", "min_low", "max_low", "max_critical"})


class Comparison(str, Enum):
    BELOW = "below"
    ABOVE = "above"


@dataclass(frozen=True)
class Rule:
    """value <comparison> band.<boundary> -> finding of the given severity."""

    comparison: Comparison
    boundary: Boundary
    severity: Severity
    label: str

    def crossed_limit(self, value: float, band: ThresholdBand) -> float | None:
        """Return the boundary value when the rule matches, otherwise None."""
        limit = getattr(band, self.boundary)
        if limit is None:
            return None
        if self.comparison is Comparison.BELOW:
            return limit if value < limit else None
        return limit if value > limit else None


@dataclass(frozen=True)
class ChannelRules:
    channel: str  # Measurement field and ThresholdConfig band share this name
    metric: MetricType
    unit: str
    rules: tuple[Rule, ...]

    def describe(self, rule: Rule, value: float) -> str:
        return f"{rule.label}: {format_value(value)}{self.unit}"


def _below(boundary: Boundary, severity: Severity, label: str) -> Rule:
    return Rule(Comparison.BELOW, boundary, severity, label)


def _above(boundary: Boundary, severity: Severity, label: str) -> Rule:
    return Rule(Comparison.ABOVE, boundary, severity, label)


CRITICAL = Severity.CRITICAL
HIGH = Severity.HIGH

RULE_TABLE: tuple[ChannelRules, ...] = (
    ChannelRules(
        channel="heart_rate",
        metric=MetricType.HEART_RATE,
        unit=" bpm",
        rules=(
            _below("min_critical", CRITICAL, "Critical low heart rate"),
            _below("min_low", HIGH, "Low heart rate"),
            _above("max_critical", CRITICAL, "Critical high heart rate"),
            _above("max_low", HIGH, "High heart rate"),
        ),
    ),
    ChannelRules(
        channel="blood_pressure_systolic",
        metric=MetricType.BLOOD_PRESSURE,
        unit=" mmHg",
        rules=(
            _below("min_critical", CRITICAL, "Critical low systolic BP"),
            _above("max_critical", CRITICAL, "Critical high systolic BP"),
            _above("max_low", HIGH, "High systolic BP"),
        ),
    ),
    ChannelRules(
        channel="blood_pressure_diastolic",
        metric=MetricType.BLOOD_PRESSURE,
        unit=" mmHg",
        rules=(
            _below("min_critical", CRITICAL, "Critical low diastolic BP"),
            _above("max_critical", CRITICAL, "Critical high diastolic BP"),
        ),
    ),
    ChannelRules(
        channel="temperature",
        metric=MetricType.TEMPERATURE,
        unit="°C",
        rules=(
            _below("min_critical", CRITICAL, "Critical low temperature"),
            _above("max_critical", CRITICAL, "Critical high temperature"),
            _above("max_low", HIGH, "High temperature"),
        ),
    ),
    ChannelRules(
        channel="oxygen_saturation",
        metric=MetricType.OXYGEN,
        unit="%",
        rules=(
            _below("min_critical", CRITICAL, "Critical low SpO2"),
            _below("min_low", HIGH, "Low SpO2"),
        ),
    ),
    ChannelRules(
        channel="blood_glucose",
        metric=MetricType.GLUCOSE,
        unit=" mg/dL",
        rules=(
            _below("min_critical", CRITICAL, "Critical low blood glucose"),
            _above("max_critical", CRITICAL, "Critical high blood glucose"),
            _above("max_low", HIGH, "High blood glucose"),
        ),
    ),
)


def format_value(value: float) -> str:
    """165.0 -> '165', 37.8 -> '37.8'."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


class ThresholdEvaluator:
    """Pure classification of a reading against a threshold configuration."""

    def __init__(self, rules: tuple[ChannelRules, ...] = RULE_TABLE) -> None:
        self.rules = rules

    def evaluate(self, measurement: Measurement, thresholds: ThresholdConfig) -> list[Finding]:
        findings: list[Finding] = []
        for channel in self.rules:
            value = getattr(measurement, channel.channel)
            if value is None:
                continue
            finding = self._first_match(channel, value, getattr(thresholds, channel.channel))
            if finding is not None:
                findings.append(finding)
        return findings

    @staticmethod
    def _first_match(channel: ChannelRules, value: float, band: ThresholdBand) -> Finding | None:
        for rule in channel.rules:
            limit = rule.crossed_limit(value, band)
            if limit is not None:
                return Finding(
                    channel=channel.channel,
                    metric=channel.metric,
                    severity=rule.severity,
                    message=channel.describe(rule, value),
                    value=value,
                    threshold_crossed=limit,
                )
        return None


def merge_threshold_changes(
    current: ThresholdConfig, changes: ThresholdConfig | Mapping[str, Any]
) -> ThresholdConfig:
    """
    Apply a partial update to a configuration.

    ``changes`` maps band names to either a ThresholdBand (replaces the band)
    or a mapping of boundary names to values (merged into the band). A whole
    ThresholdConfig replaces every band.
    """
    if isinstance(changes, ThresholdConfig):
        changes = changes.bands()

    bands = current.bands()
    for name, value in changes.items():
        if name not in BAND_NAMES:
            raise ValidationError(f"Unknown threshold band: {name}", band=name)

        if isinstance(value, ThresholdBand):
            bands[name] = value
            continue
        if not isinstance(value, Mapping):
            raise ValidationError(
                f"Threshold band {name} must be a mapping of boundaries", band=name
            )

        unknown = set(value) - BOUNDARY_NAMES
        if unknown:
            raise ValidationError(
                f"Unknown boundaries for {name}: {', '.join(sorted(unknown))}", band=name
            )
        try:
            bands[name] = ThresholdBand.model_validate({**bands[name].model_dump(), **value})
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid boundary value for {name}: {e}", band=name) from e

    return ThresholdConfig(**bands)


class ThresholdStore:
    """
    Lazily-initialised singleton configuration.

    The store does not check administrator privilege; the engine does that
    before calling ``update``.
    """

    def __init__(
        self,
        repository: ThresholdRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.repository = repository
        self.clock = clock
        self.logger = logger.bind(component="threshold_store")

    async def get(self) -> ThresholdConfig:
        async with repository_call("thresholds.get"):
            config = await self.repository.get()
        if config is not None:
            return config

        async with repository_call("thresholds.upsert"):
            config = await self.repository.upsert(ThresholdConfig(updated_at=self.clock()))
        self.logger.info("threshold_defaults_created")
        return config

    async def update(
        self, changes: ThresholdConfig | Mapping[str, Any], actor: ActorContext
    ) -> ThresholdConfig:
        current = await self.get()
        merged = merge_threshold_changes(current, changes).model_copy(
            update={"updated_at": self.clock()}
        )

        for name, band in merged.bands().items():
            if not band.is_ordered():
                self.logger.warning(
                    "threshold_band_inverted", band=name, **band.model_dump(exclude_none=True)
                )

        async with repository_call("thresholds.upsert", actor=actor.user_id):
            saved = await self.repository.upsert(merged)

        changed = sorted(changes.bands()) if isinstance(changes, ThresholdConfig) else sorted(changes)
        self.logger.info("thresholds_updated", actor=actor.user_id, bands=changed)
        return saved
