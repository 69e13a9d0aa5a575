"""
Rolling-window risk score per patient.

score = sum(weight[severity] for each ACTIVE alert in the window)
        - monitoring bonus (when enough readings were taken in the window)
clamped to [0, max_score], then bucketed into a RiskLevel by the configured floors.
"""

from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta

import structlog

from vitalguard.config import RiskScoringConfig
from vitalguard.domain.errors import NotFoundError
from vitalguard.domain.models import Alert, AlertStatus, RiskLevel, RiskSnapshot, Severity
from vitalguard.services.repository import (
    AlertRepository,
    PatientRepository,
    VitalsRepository,
    repository_call,
)

logger = structlog.get_logger(__name__)


def risk_level_for(score: int, floors: Mapping[RiskLevel, int] | None = None) -> RiskLevel:
    """Highest level whose floor the score reaches; LOW when none is reached."""
    floors = RiskScoringConfig().level_floors if floors is None else floors
    for level, floor in sorted(floors.items(), key=lambda item: item[1], reverse=True):
        if score >= floor:
            return level
    return RiskLevel.LOW


def score_history(
    patient_id: str,
    alerts: Iterable[Alert],
    vitals_count: int,
    config: RiskScoringConfig,
    now: datetime | None = None,
) -> RiskSnapshot:
    """Score already-windowed alerts and a windowed reading count. No I/O."""
    active = Counter(a.severity for a in alerts if a.status == AlertStatus.ACTIVE)

    score = sum(config.severity_weights.get(severity, 0) * n for severity, n in active.items())
    if vitals_count >= config.monitoring_min_readings:
        score -= config.monitoring_bonus
    score = min(config.max_score, max(0, score))

    return RiskSnapshot(
        patient_id=patient_id,
        risk_score=score,
        risk_level=risk_level_for(score, config.level_floors),
        critical_active=active[Severity.CRITICAL],
        high_active=active[Severity.HIGH],
        medium_active=active[Severity.MEDIUM],
        vitals_in_window=vitals_count,
        computed_at=now or datetime.now(UTC),
    )


class RiskScorer:
    """Reads a patient's windowed history and overwrites their risk snapshot."""

    def __init__(
        self,
        patients: PatientRepository,
        vitals: VitalsRepository,
        alerts: AlertRepository,
        config: RiskScoringConfig | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.patients = patients
        self.vitals = vitals
        self.alerts = alerts
        self.config = config or RiskScoringConfig()
        self.clock = clock
        self.logger = logger.bind(component="risk_scorer")

    def window_start(self, now: datetime) -> datetime:
        return now - timedelta(days=self.config.window_days)

    async def recompute(self, patient_id: str) -> RiskSnapshot:
        async with repository_call("patients.find_by_id", patient_id=patient_id):
            patient = await self.patients.find_by_id(patient_id)
        if patient is None:
            raise NotFoundError(f"Patient {patient_id} not found", patient_id=patient_id)

        now = self.clock()
        since = self.window_start(now)

        async with repository_call("alerts.find_by_patient_since", patient_id=patient_id):
            alerts = await self.alerts.find_by_patient_since(patient_id, since)
        async with repository_call("vitals.find_by_patient_since", patient_id=patient_id):
            readings = await self.vitals.find_by_patient_since(patient_id, since)

        snapshot = score_history(patient_id, alerts, len(readings), self.config, now)

        async with repository_call("patients.update_risk", patient_id=patient_id):
            await self.patients.update_risk(patient_id, snapshot.risk_score, snapshot.risk_level)

        self.logger.info(
            "risk_recomputed",
            patient_id=patient_id,
            previous_score=patient.risk_score,
            risk_score=snapshot.risk_score,
            risk_level=snapshot.risk_level.value,
            critical_active=snapshot.critical_active,
            high_active=snapshot.high_active,
            medium_active=snapshot.medium_active,
            vitals_in_window=snapshot.vitals_in_window,
        )
        return snapshot
