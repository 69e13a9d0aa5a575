"""
End-to-end tests of the engine façade over in-memory repositories.

Covers:
- Ingestion: validation, evaluation, alert creation and risk refresh
- Lifecycle transitions triggering exactly one recompute each
- Non-transactional partial failure and PersistenceError wrapping
- Alert listing with doctor scoping
- Per-patient serialization of risk recomputation
"""

import asyncio
from datetime import UTC, datetime, timedelta, timezone

import pydantic
import pytest

from vitalguard.config import AppConfig, EngineConfig
from vitalguard.domain.errors import (
    AccessDenied,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from vitalguard.domain.models import (
    ActorContext,
    Alert,
    AlertFilter,
    AlertStatus,
    Measurement,
    MetricType,
    Patient,
    RiskLevel,
    RiskSnapshot,
    Severity,
)
from vitalguard.services import Repositories, VitalsEngine
from vitalguard.services.engine import PatientLocks
from vitalguard.services.repository import InMemoryAlerts, InMemoryPatients


class RecomputeSpy:
    """Counts recompute calls while delegating to the real scorer."""

    def __init__(self, engine: VitalsEngine) -> None:
        self.calls: list[str] = []
        self._recompute = engine.risk_scorer.recompute
        engine.risk_scorer.recompute = self  # type: ignore[method-assign]

    async def __call__(self, patient_id: str) -> RiskSnapshot:
        self.calls.append(patient_id)
        return await self._recompute(patient_id)


class FlakyAlerts(InMemoryAlerts):
    """Alert store whose create() fails after ``fail_after`` successful calls."""

    def __init__(self, fail_after: int) -> None:
        super().__init__()
        self.fail_after = fail_after

    async def create(self, alert: Alert) -> Alert:
        if len(self.rows) >= self.fail_after:
            raise ConnectionError("database connection lost")
        return await super().create(alert)


class BrokenPatients(InMemoryPatients):
    async def find_by_id(self, patient_id: str) -> Patient | None:
        raise TimeoutError("patients table locked")


async def _risk(engine: VitalsEngine, patient_id: str = "patient-1") -> tuple[int, RiskLevel]:
    patient = await engine.repositories.patients.find_by_id(patient_id)
    assert patient is not None
    return patient.risk_score, patient.risk_level


class TestIngest:
    @pytest.mark.asyncio
    async def test_low_oxygen_creates_critical_alert_and_raises_risk(
        self, engine: VitalsEngine
    ) -> None:
        before, _ = await _risk(engine)

        alerts = await engine.ingest(Measurement(patient_id="patient-1", oxygen_saturation=85))

        assert len(alerts) == 1
        alert = alerts[0]
        assert (alert.metric, alert.severity, alert.status) == (
            MetricType.OXYGEN,
            Severity.CRITICAL,
            AlertStatus.ACTIVE,
        )
        assert alert.threshold == 90

        after, level = await _risk(engine)
        assert after - before >= 25
        assert level == RiskLevel.MEDIUM

    @pytest.mark.asyncio
    async def test_normal_reading_is_stored_without_alerts(
        self, engine: VitalsEngine, repositories: Repositories
    ) -> None:
        spy = RecomputeSpy(engine)

        alerts = await engine.ingest(
            Measurement(patient_id="patient-1", heart_rate=72, temperature=36.8)
        )

        assert alerts == []
        assert len(repositories.vitals.rows) == 1  # type: ignore[attr-defined]
        assert spy.calls == ["patient-1"]

    @pytest.mark.asyncio
    async def test_raw_mapping_is_validated_into_a_measurement(self, engine: VitalsEngine) -> None:
        alerts = await engine.ingest(
            {"patient_id": "patient-1", "heart_rate": "130", "blood_glucose": 40}
        )
        assert [(a.metric, a.severity) for a in alerts] == [
            (MetricType.HEART_RATE, Severity.CRITICAL),
            (MetricType.GLUCOSE, Severity.CRITICAL),
        ]

    @pytest.mark.parametrize(
        "payload",
        [
            {"heart_rate": 80},
            {"patient_id": "", "heart_rate": 80},
            {"patient_id": "patient-1", "heart_rate": "fast"},
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_input_raises_validation_error(
        self, engine: VitalsEngine, repositories: Repositories, payload: dict
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await engine.ingest(payload)

        assert exc_info.value.code == "validation_error"
        assert repositories.vitals.rows == {}  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_naive_timestamp_is_rejected_before_anything_is_stored(
        self, engine: VitalsEngine, repositories: Repositories
    ) -> None:
        with pytest.raises(ValidationError):
            await engine.ingest(
                {
                    "patient_id": "patient-1",
                    "heart_rate": 140,
                    "recorded_at": "2026-10-18T10:00:00",
                }
            )

        assert repositories.vitals.rows == {}  # type: ignore[attr-defined]
        assert repositories.alerts.rows == {}  # type: ignore[attr-defined]

        # The patient's risk scoring keeps working afterwards
        await engine.ingest(Measurement(patient_id="patient-1", heart_rate=140))
        assert await _risk(engine) == (25, RiskLevel.MEDIUM)

    def test_measurement_requires_timezone_aware_timestamps(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            Measurement(patient_id="patient-1", recorded_at=datetime(2026, 10, 18))

    @pytest.mark.asyncio
    async def test_offset_timestamp_is_scored_inside_the_window(
        self, engine: VitalsEngine
    ) -> None:
        recorded_at = (datetime.now(UTC) - timedelta(days=1)).astimezone(
            timezone(timedelta(hours=2))
        )

        await engine.ingest(
            {"patient_id": "patient-1", "heart_rate": 140, "recorded_at": recorded_at.isoformat()}
        )

        assert await _risk(engine) == (25, RiskLevel.MEDIUM)

    @pytest.mark.asyncio
    async def test_unknown_patient_raises_not_found_before_persisting(
        self, engine: VitalsEngine, repositories: Repositories
    ) -> None:
        with pytest.raises(NotFoundError):
            await engine.ingest(Measurement(patient_id="nobody", heart_rate=200))

        assert repositories.vitals.rows == {}  # type: ignore[attr-defined]
        assert repositories.alerts.rows == {}  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_actor_must_attend_patient(
        self, engine: VitalsEngine, other_doctor: ActorContext
    ) -> None:
        with pytest.raises(AccessDenied):
            await engine.ingest(
                Measurement(patient_id="patient-1", heart_rate=80), actor=other_doctor
            )

    @pytest.mark.asyncio
    async def test_repeated_out_of_band_readings_accumulate(self, engine: VitalsEngine) -> None:
        for _ in range(5):
            await engine.ingest(Measurement(patient_id="patient-1", heart_rate=140))

        assert await _risk(engine) == (100, RiskLevel.CRITICAL)
        alerts = await engine.list_alerts(AlertFilter(patient_id="patient-1"))
        assert len(alerts) == 5


class TestTransitions:
    @pytest.mark.asyncio
    async def test_acknowledge_then_resolve_recomputes_once_per_transition(
        self, engine: VitalsEngine, doctor: ActorContext
    ) -> None:
        (alert,) = await engine.ingest(Measurement(patient_id="patient-1", oxygen_saturation=85))
        spy = RecomputeSpy(engine)

        acknowledged = await engine.transition_alert(alert.id, AlertStatus.ACKNOWLEDGED, doctor)
        assert spy.calls == ["patient-1"]
        assert acknowledged.acknowledged_by == doctor.user_id
        assert acknowledged.acknowledged_at is not None
        assert await _risk(engine) == (0, RiskLevel.LOW)

        resolved = await engine.transition_alert(alert.id, AlertStatus.RESOLVED, doctor)
        assert spy.calls == ["patient-1", "patient-1"]
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolved_at is not None

    @pytest.mark.asyncio
    async def test_rejected_transition_does_not_recompute(
        self, engine: VitalsEngine, other_doctor: ActorContext
    ) -> None:
        (alert,) = await engine.ingest(Measurement(patient_id="patient-1", oxygen_saturation=85))
        spy = RecomputeSpy(engine)

        with pytest.raises(AccessDenied):
            await engine.transition_alert(alert.id, AlertStatus.RESOLVED, other_doctor)

        assert spy.calls == []
        assert await _risk(engine) == (25, RiskLevel.MEDIUM)


class TestFailureHandling:
    @pytest.mark.asyncio
    async def test_partial_alert_failure_keeps_created_alerts_and_skips_recompute(
        self, patient: Patient
    ) -> None:
        repositories = Repositories.in_memory([patient])
        flaky = FlakyAlerts(fail_after=1)
        repositories.alerts = flaky
        engine = VitalsEngine(repositories, config=AppConfig())

        with pytest.raises(PersistenceError) as exc_info:
            await engine.ingest(
                Measurement(patient_id="patient-1", heart_rate=140, oxygen_saturation=85)
            )

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert [a.metric for a in flaky.rows.values()] == [MetricType.HEART_RATE]
        assert await _risk(engine) == (0, RiskLevel.LOW)

    @pytest.mark.asyncio
    async def test_repository_errors_surface_as_persistence_error(self, patient: Patient) -> None:
        repositories = Repositories.in_memory()
        repositories.patients = BrokenPatients([patient])
        engine = VitalsEngine(repositories, config=AppConfig())

        with pytest.raises(PersistenceError) as exc_info:
            await engine.recompute_risk("patient-1")

        assert exc_info.value.code == "persistence_error"
        assert exc_info.value.context["operation"] == "patients.find_by_id"
        assert isinstance(exc_info.value.__cause__, TimeoutError)


class TestListAlerts:
    @pytest.fixture
    async def seeded(self, engine: VitalsEngine) -> VitalsEngine:
        await engine.ingest(Measurement(patient_id="patient-1", heart_rate=140))
        await engine.ingest(Measurement(patient_id="patient-1", heart_rate=110))
        await engine.ingest(Measurement(patient_id="patient-2", oxygen_saturation=85))
        return engine

    @pytest.mark.asyncio
    async def test_admin_sees_everything_newest_first(
        self, seeded: VitalsEngine, admin: ActorContext
    ) -> None:
        alerts = await seeded.list_alerts(actor=admin)

        assert len(alerts) == 3
        assert alerts == sorted(alerts, key=lambda a: a.created_at, reverse=True)

    @pytest.mark.asyncio
    async def test_doctor_only_sees_attended_patients(
        self, seeded: VitalsEngine, doctor: ActorContext
    ) -> None:
        alerts = await seeded.list_alerts(actor=doctor)

        assert {a.patient_id for a in alerts} == {"patient-1"}
        assert await seeded.list_alerts(AlertFilter(patient_id="patient-2"), doctor) == []

    @pytest.mark.asyncio
    async def test_filters_by_severity_and_status(
        self, seeded: VitalsEngine, admin: ActorContext
    ) -> None:
        critical = await seeded.list_alerts(AlertFilter(severity=Severity.CRITICAL), admin)
        assert len(critical) == 2

        await seeded.transition_alert(critical[0].id, AlertStatus.RESOLVED, admin)

        active_critical = await seeded.list_alerts(
            AlertFilter(severity=Severity.CRITICAL, status=AlertStatus.ACTIVE), admin
        )
        assert len(active_critical) == 1


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_ingests_leave_consistent_snapshot(self, engine: VitalsEngine) -> None:
        await asyncio.gather(
            *(
                engine.ingest(Measurement(patient_id="patient-1", oxygen_saturation=85))
                for _ in range(3)
            )
        )

        assert await _risk(engine) == (75, RiskLevel.CRITICAL)

    @pytest.mark.asyncio
    async def test_patient_locks_serialize_holders_and_are_released(self) -> None:
        locks = PatientLocks()
        active = 0
        overlaps = 0

        async def worker() -> None:
            nonlocal active, overlaps
            async with locks.hold("patient-1"):
                active += 1
                if active > 1:
                    overlaps += 1
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(5)))

        assert overlaps == 0
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_patient_locks_reuse_the_existing_lock(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        locks = PatientLocks()
        created: list[asyncio.Lock] = []
        real_lock = asyncio.Lock

        def counting_lock() -> asyncio.Lock:
            lock = real_lock()
            created.append(lock)
            return lock

        monkeypatch.setattr(asyncio, "Lock", counting_lock)

        async def worker() -> None:
            async with locks.hold("patient-1"):
                await asyncio.sleep(0.01)

        await asyncio.gather(*(worker() for _ in range(3)))

        assert len(created) == 1

    @pytest.mark.asyncio
    async def test_recompute_without_serialization(self, repositories: Repositories) -> None:
        engine = VitalsEngine(
            repositories, config=AppConfig(engine=EngineConfig(serialize_risk_recompute=False))
        )

        await engine.ingest(Measurement(patient_id="patient-1", heart_rate=140))

        assert await _risk(engine) == (25, RiskLevel.MEDIUM)
