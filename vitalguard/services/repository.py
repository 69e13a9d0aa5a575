"""
Repository contracts consumed by the engine, plus in-memory implementations.

Key patterns:
- Protocol-based dependency injection (structural typing, easy test doubles)
- Async-first: every repository call is a potential suspension point
- Models are immutable; updates store a replacement copy
"""

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

import structlog

from vitalguard.domain.errors import EngineError, NotFoundError, PersistenceError
from vitalguard.domain.models import (
    Alert,
    AlertFilter,
    Measurement,
    Patient,
    RiskLevel,
    ThresholdConfig,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def repository_call(operation: str, **context: object) -> AsyncIterator[None]:
    """
    Error boundary around a repository call.

    Engine errors pass through untouched; anything else a store raises is
    logged and re-raised as PersistenceError chained to the original.
    """
    try:
        yield
    except EngineError:
        raise
    except Exception as e:
        logger.exception("repository_call_failed", operation=operation, error=str(e), **context)
        raise PersistenceError(f"{operation} failed: {e}", operation=operation, **context) from e


class PatientRepository(Protocol):
    async def find_by_id(self, patient_id: str) -> Patient | None: ...

    async def update_risk(self, patient_id: str, risk_score: int, risk_level: RiskLevel) -> Patient:
        """Overwrite the stored risk snapshot. Raises NotFoundError for unknown ids."""
        ...

    async def list_by_doctor(self, doctor_id: str) -> list[Patient]: ...


class VitalsRepository(Protocol):
    async def create(self, measurement: Measurement) -> Measurement: ...

    async def find_by_patient_since(self, patient_id: str, since: datetime) -> list[Measurement]:
        """Readings with recorded_at >= since."""
        ...


class AlertRepository(Protocol):
    async def create(self, alert: Alert) -> Alert: ...

    async def find_by_id(self, alert_id: str) -> Alert | None: ...

    async def update_status(self, alert: Alert) -> Alert:
        """Replace the stored alert with a transitioned copy."""
        ...

    async def find_by_patient_since(self, patient_id: str, since: datetime) -> list[Alert]:
        """Alerts with created_at >= since."""
        ...

    async def find(self, criteria: AlertFilter) -> list[Alert]:
        """Alerts matching every set criterion, newest first."""
        ...


class ThresholdRepository(Protocol):
    async def get(self) -> ThresholdConfig | None: ...

    async def upsert(self, config: ThresholdConfig) -> ThresholdConfig: ...


class InMemoryPatients:
    def __init__(self, patients: Iterable[Patient] = ()) -> None:
        self.rows: dict[str, Patient] = {p.id: p for p in patients}

    async def add(self, patient: Patient) -> Patient:
        self.rows[patient.id] = patient
        return patient

    async def find_by_id(self, patient_id: str) -> Patient | None:
        return self.rows.get(patient_id)

    async def update_risk(self, patient_id: str, risk_score: int, risk_level: RiskLevel) -> Patient:
        patient = self.rows.get(patient_id)
        if patient is None:
            raise NotFoundError(f"Patient {patient_id} not found", patient_id=patient_id)
        updated = patient.model_copy(update={"risk_score": risk_score, "risk_level": risk_level})
        self.rows[patient_id] = updated
        return updated

    async def list_by_doctor(self, doctor_id: str) -> list[Patient]:
        return [p for p in self.rows.values() if p.doctor_id == doctor_id]


class InMemoryVitals:
    def __init__(self) -> None:
        self.rows: dict[str, Measurement] = {}

    async def create(self, measurement: Measurement) -> Measurement:
        self.rows[measurement.id] = measurement
        return measurement

    async def find_by_patient_since(self, patient_id: str, since: datetime) -> list[Measurement]:
        return sorted(
            (
                m
                for m in self.rows.values()
                if m.patient_id == patient_id and m.recorded_at >= since
            ),
            key=lambda m: m.recorded_at,
            reverse=True,
        )


class InMemoryAlerts:
    def __init__(self) -> None:
        self.rows: dict[str, Alert] = {}

    async def create(self, alert: Alert) -> Alert:
        self.rows[alert.id] = alert
        return alert

    async def find_by_id(self, alert_id: str) -> Alert | None:
        return self.rows.get(alert_id)

    async def update_status(self, alert: Alert) -> Alert:
        if alert.id not in self.rows:
            raise NotFoundError(f"Alert {alert.id} not found", alert_id=alert.id)
        self.rows[alert.id] = alert
        return alert

    async def find_by_patient_since(self, patient_id: str, since: datetime) -> list[Alert]:
        return await self.find(AlertFilter(patient_id=patient_id, since=since))

    async def find(self, criteria: AlertFilter) -> list[Alert]:
        matches = [
            a
            for a in self.rows.values()
            if (criteria.patient_id is None or a.patient_id == criteria.patient_id)
            and (criteria.status is None or a.status == criteria.status)
            and (criteria.severity is None or a.severity == criteria.severity)
            and (criteria.since is None or a.created_at >= criteria.since)
        ]
        return sorted(matches, key=lambda a: a.created_at, reverse=True)


class InMemoryThresholds:
    def __init__(self) -> None:
        self.row: ThresholdConfig | None = None

    async def get(self) -> ThresholdConfig | None:
        return self.row

    async def upsert(self, config: ThresholdConfig) -> ThresholdConfig:
        self.row = config
        return config


@dataclass
class Repositories:
    """The four stores the engine depends on."""

    patients: PatientRepository
    vitals: VitalsRepository
    alerts: AlertRepository
    thresholds: ThresholdRepository

    @classmethod
    def in_memory(cls, patients: Iterable[Patient] = ()) -> "Repositories":
        return cls(
            patients=InMemoryPatients(patients),
            vitals=InMemoryVitals(),
            alerts=InMemoryAlerts(),
            thresholds=InMemoryThresholds(),
        )
