"""Shared fixtures: two patients with different attending doctors and an engine over them."""

import pytest

from vitalguard.config import AppConfig
from vitalguard.domain.models import ActorContext, Patient, UserRole
from vitalguard.services import Repositories, VitalsEngine


@pytest.fixture
def doctor() -> ActorContext:
    return ActorContext(user_id="doctor-1", role=UserRole.DOCTOR)


@pytest.fixture
def other_doctor() -> ActorContext:
    return ActorContext(user_id="doctor-2", role=UserRole.DOCTOR)


@pytest.fixture
def admin() -> ActorContext:
    return ActorContext(user_id="admin-1", role=UserRole.ADMIN)


@pytest.fixture
def patient() -> Patient:
    return Patient(id="patient-1", first_name="Robert", last_name="Taylor", doctor_id="doctor-1")


@pytest.fixture
def other_patient() -> Patient:
    return Patient(id="patient-2", first_name="Maria", last_name="Garcia", doctor_id="doctor-2")


@pytest.fixture
def repositories(patient: Patient, other_patient: Patient) -> Repositories:
    return Repositories.in_memory([patient, other_patient])


@pytest.fixture
def engine(repositories: Repositories) -> VitalsEngine:
    """Engine with default thresholds and scoring, independent of the environment."""
    return VitalsEngine(repositories, config=AppConfig())
