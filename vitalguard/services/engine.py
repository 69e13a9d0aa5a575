"""
Engine façade: the operations exposed to routes, schedulers and scripts.

Ingestion pipeline, strictly in this order:
1. Validate the reading and resolve its patient
2. Persist the reading
3. Snapshot the active thresholds and evaluate
4. Create one alert per finding
5. Recompute the patient's risk snapshot

The sequence is not transactional. If alert creation fails part-way, alerts
created so far stay persisted, the error propagates, and step 5 is skipped.
"""

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import pydantic
import structlog

from vitalguard.config import AppConfig, get_config
from vitalguard.domain.errors import EngineError, NotFoundError, ValidationError
from vitalguard.domain.models import (
    ActorContext,
    Alert,
    AlertFilter,
    AlertStatus,
    Measurement,
    Patient,
    RiskSnapshot,
    ThresholdConfig,
    UserRole,
)
from vitalguard.services.access import AccessPolicy
from vitalguard.services.alert_lifecycle import AlertLifecycle
from vitalguard.services.repository import Repositories, repository_call
from vitalguard.services.risk_scoring import RiskScorer
from vitalguard.services.thresholds import ThresholdEvaluator, ThresholdStore

logger = structlog.get_logger(__name__)


class PatientLocks:
    """One asyncio.Lock per patient id, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: Counter[str] = Counter()

    @asynccontextmanager
    async def hold(self, patient_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(patient_id)
        if lock is None:
            lock = self._locks[patient_id] = asyncio.Lock()
        self._users[patient_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[patient_id] -= 1
            if self._users[patient_id] <= 0:
                del self._users[patient_id]
                self._locks.pop(patient_id, None)

    def __len__(self) -> int:
        return len(self._locks)


class VitalsEngine:
    """
    Orchestrates threshold evaluation, alert lifecycle and risk scoring.

    Callers pass an already-authenticated ActorContext; role and ownership
    checks are delegated to the AccessPolicy.
    """

    def __init__(
        self,
        repositories: Repositories,
        config: AppConfig | None = None,
        access: AccessPolicy | None = None,
        evaluator: ThresholdEvaluator | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.config = config or get_config()
        self.repositories = repositories
        self.access = access or AccessPolicy()
        self.evaluator = evaluator or ThresholdEvaluator()
        self.clock = clock

        self.thresholds = ThresholdStore(repositories.thresholds, clock)
        self.lifecycle = AlertLifecycle(
            repositories.alerts, repositories.patients, self.access, clock
        )
        self.risk_scorer = RiskScorer(
            repositories.patients,
            repositories.vitals,
            repositories.alerts,
            self.config.risk,
            clock,
        )
        self._locks = PatientLocks() if self.config.engine.serialize_risk_recompute else None
        self.logger = logger.bind(component="vitals_engine")

    async def ingest(
        self,
        measurement: Measurement | Mapping[str, Any],
        actor: ActorContext | None = None,
    ) -> list[Alert]:
        """
        Record a reading, raise alerts for out-of-band values and refresh risk.

        Returns:
            list[Alert]: alerts created for this reading, possibly empty.

        Raises:
            ValidationError: malformed reading or missing patient id.
            NotFoundError: the patient does not exist.
            AccessDenied: ``actor`` was given and may not submit for this patient.
            PersistenceError: a repository call failed.
        """
        reading = self._coerce_measurement(measurement)
        patient = await self._require_patient(reading.patient_id)
        if actor is not None:
            self.access.ensure_can_access_patient(actor, patient)

        async with repository_call("vitals.create", patient_id=patient.id):
            reading = await self.repositories.vitals.create(reading)

        thresholds = await self.thresholds.get()
        findings = self.evaluator.evaluate(reading, thresholds)

        created: list[Alert] = []
        try:
            for finding in findings:
                created.append(await self.lifecycle.create(patient.id, finding))
        except EngineError as e:
            self.logger.error(
                "ingest_partially_failed",
                patient_id=patient.id,
                measurement_id=reading.id,
                findings=len(findings),
                alerts_created=len(created),
                error=str(e),
            )
            raise

        snapshot = await self.recompute_risk(patient.id)

        self.logger.info(
            "measurement_ingested",
            patient_id=patient.id,
            measurement_id=reading.id,
            alerts_created=len(created),
            risk_score=snapshot.risk_score,
            risk_level=snapshot.risk_level.value,
        )
        return created

    async def transition_alert(
        self, alert_id: str, target_status: AlertStatus | str, actor: ActorContext
    ) -> Alert:
        """Acknowledge or resolve an alert, then refresh its patient's risk."""
        alert = await self.lifecycle.transition(alert_id, target_status, actor)
        await self.recompute_risk(alert.patient_id)
        return alert

    async def recompute_risk(self, patient_id: str) -> RiskSnapshot:
        if self._locks is None:
            return await self.risk_scorer.recompute(patient_id)
        async with self._locks.hold(patient_id):
            return await self.risk_scorer.recompute(patient_id)

    async def get_thresholds(self) -> ThresholdConfig:
        return await self.thresholds.get()

    async def update_thresholds(
        self, changes: ThresholdConfig | Mapping[str, Any], actor: ActorContext
    ) -> ThresholdConfig:
        self.access.ensure_admin(actor)
        return await self.thresholds.update(changes, actor)

    async def list_alerts(
        self, criteria: AlertFilter | None = None, actor: ActorContext | None = None
    ) -> list[Alert]:
        """Alerts matching ``criteria``, newest first; doctors only see their patients."""
        criteria = criteria or AlertFilter()
        async with repository_call("alerts.find"):
            alerts = await self.repositories.alerts.find(criteria)

        if actor is None or actor.role != UserRole.DOCTOR:
            return alerts

        async with repository_call("patients.list_by_doctor", doctor_id=actor.user_id):
            attended = {p.id for p in await self.repositories.patients.list_by_doctor(actor.user_id)}
        return [a for a in alerts if a.patient_id in attended]

    @staticmethod
    def _coerce_measurement(measurement: Measurement | Mapping[str, Any]) -> Measurement:
        if not isinstance(measurement, Measurement):
            try:
                measurement = Measurement.model_validate(measurement)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid measurement: {e}") from e
        if not measurement.patient_id:
            raise ValidationError("Patient ID is required", measurement_id=measurement.id)
        return measurement

    async def _require_patient(self, patient_id: str | None) -> Patient:
        async with repository_call("patients.find_by_id", patient_id=patient_id):
            patient = await self.repositories.patients.find_by_id(patient_id or "")
        if patient is None:
            raise NotFoundError(f"Patient {patient_id} not found", patient_id=patient_id)
        return patient
