"""
Alert lifecycle: ACTIVE -> ACKNOWLEDGED -> RESOLVED, or ACTIVE -> RESOLVED.

RESOLVED is terminal and nothing moves back to ACTIVE. The lifecycle only
mutates alerts; the engine triggers the risk recompute after each transition.
"""

from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from vitalguard.domain.errors import InvalidTransitionError, NotFoundError, ValidationError
from vitalguard.domain.models import ActorContext, Alert, AlertStatus, Finding, Patient
from vitalguard.services.access import AccessPolicy
from vitalguard.services.repository import AlertRepository, PatientRepository, repository_call

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.ACTIVE: frozenset({AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED}),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.RESOLVED}),
    AlertStatus.RESOLVED: frozenset(),
}


def can_transition(current: AlertStatus, target: AlertStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class AlertLifecycle:
    def __init__(
        self,
        alerts: AlertRepository,
        patients: PatientRepository,
        access: AccessPolicy | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.alerts = alerts
        self.patients = patients
        self.access = access or AccessPolicy()
        self.clock = clock
        self.logger = logger.bind(component="alert_lifecycle")

    async def create(self, patient_id: str, finding: Finding) -> Alert:
        """Persist a new ACTIVE alert. Repeated findings are not deduplicated."""
        now = self.clock()
        alert = Alert(
            patient_id=patient_id,
            metric=finding.metric,
            severity=finding.severity,
            message=finding.message,
            value=finding.value,
            threshold=finding.threshold_crossed,
            status=AlertStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        async with repository_call("alerts.create", patient_id=patient_id):
            alert = await self.alerts.create(alert)

        self.logger.info(
            "alert_created",
            alert_id=alert.id,
            patient_id=patient_id,
            metric=alert.metric.value,
            severity=alert.severity.value,
            value=alert.value,
            threshold=alert.threshold,
        )
        return alert

    async def transition(
        self, alert_id: str, target_status: AlertStatus | str, actor: ActorContext
    ) -> Alert:
        """
        Move an alert to ``target_status`` on behalf of ``actor``.

        Raises:
            NotFoundError: the alert or its patient does not exist.
            AccessDenied: the actor may not act on this patient's alerts.
            InvalidTransitionError: the edge is not part of the lifecycle.
        """
        try:
            target_status = AlertStatus(target_status)
        except ValueError as e:
            raise ValidationError(
                f"Unknown alert status: {target_status}", alert_id=alert_id
            ) from e

        async with repository_call("alerts.find_by_id", alert_id=alert_id):
            alert = await self.alerts.find_by_id(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found", alert_id=alert_id)

        patient = await self._owning_patient(alert)
        self.access.ensure_can_access_patient(actor, patient)

        if not can_transition(alert.status, target_status):
            raise InvalidTransitionError(
                f"Cannot move alert from {alert.status.value} to {target_status.value}",
                alert_id=alert_id,
                current=alert.status.value,
                target=target_status.value,
            )

        now = self.clock()
        changes: dict[str, object] = {"status": target_status, "updated_at": now}
        if target_status is AlertStatus.ACKNOWLEDGED:
            changes["acknowledged_by"] = actor.user_id
            changes["acknowledged_at"] = now
        elif target_status is AlertStatus.RESOLVED:
            changes["resolved_at"] = now

        async with repository_call("alerts.update_status", alert_id=alert_id):
            updated = await self.alerts.update_status(alert.model_copy(update=changes))

        self.logger.info(
            "alert_transitioned",
            alert_id=alert_id,
            patient_id=alert.patient_id,
            from_status=alert.status.value,
            to_status=target_status.value,
            actor=actor.user_id,
        )
        return updated

    async def _owning_patient(self, alert: Alert) -> Patient:
        async with repository_call("patients.find_by_id", patient_id=alert.patient_id):
            patient = await self.patients.find_by_id(alert.patient_id)
        if patient is None:
            raise NotFoundError(
                f"Patient {alert.patient_id} for alert {alert.id} not found",
                patient_id=alert.patient_id,
                alert_id=alert.id,
            )
        return patient
