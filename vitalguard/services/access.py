"""Role and ownership checks for already-authenticated callers."""

from vitalguard.domain.errors import AccessDenied
from vitalguard.domain.models import ActorContext, Patient, UserRole


class AccessPolicy:
    """
    Administrators may act on every patient; doctors only on patients they attend.
    """

    def can_access_patient(self, actor: ActorContext, patient: Patient) -> bool:
        if actor.role == UserRole.DOCTOR:
            return patient.doctor_id == actor.user_id
        return True

    def ensure_can_access_patient(self, actor: ActorContext, patient: Patient) -> None:
        if not self.can_access_patient(actor, patient):
            raise AccessDenied(
                f"User {actor.user_id} does not attend patient {patient.id}",
                user_id=actor.user_id,
                patient_id=patient.id,
            )

    def ensure_admin(self, actor: ActorContext) -> None:
        if not actor.is_admin:
            raise AccessDenied("Admin access required", user_id=actor.user_id)
