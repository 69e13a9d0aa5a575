"""
Domain models for patient vitals monitoring.

These models represent the core clinical concepts and are storage-agnostic.
They use Pydantic for validation; repositories decide how they are persisted.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid4().hex


class MetricType(str, Enum):
    """Physiological channels that can raise alerts."""

    HEART_RATE = "HEART_RATE"
    BLOOD_PRESSURE = "BLOOD_PRESSURE"
    TEMPERATURE = "TEMPERATURE"
    OXYGEN = "OXYGEN"
    GLUCOSE = "GLUCOSE"


class Severity(str, Enum):
    """Alert severity tiers."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class UserRole(str, Enum):
    DOCTOR = "DOCTOR"
    ADMIN = "ADMIN"


class Measurement(BaseModel):
    """A single vitals reading. Every clinical field is independently optional."""

    model_config = ConfigDict(frozen=True)  # Readings are never edited

    id: str = Field(default_factory=_new_id)
    patient_id: str | None = None
    heart_rate: float | None = Field(default=None, description="Beats per minute")
    blood_pressure_systolic: float | None = Field(default=None, description="mmHg")
    blood_pressure_diastolic: float | None = Field(default=None, description="mmHg")
    temperature: float | None = Field(default=None, description="Degrees Celsius")
    oxygen_saturation: float | None = Field(default=None, description="SpO2 percent")
    respiratory_rate: float | None = Field(default=None, description="Breaths per minute")
    blood_glucose: float | None = Field(default=None, description="mg/dL")
    weight: float | None = Field(default=None, description="Kilograms")
    height: float | None = Field(default=None, description="Centimetres")
    notes: str | None = None
    recorded_at: AwareDatetime = Field(default_factory=_utcnow)
    created_at: AwareDatetime = Field(default_factory=_utcnow)


class ThresholdBand(BaseModel):
    """
    Boundaries for one channel: min_critical <= min_low <= max_low <= max_critical.

    A boundary left as None does not exist for the channel, and rules that
    reference it never match. Ordering is not enforced.
    """

    min_critical: float | None = None
    min_low: float | None = None
    max_low: float | None = None
    max_critical: float | None = None

    def is_ordered(self) -> bool:
        bounds = [
            b
            for b in (self.min_critical, self.min_low, self.max_low, self.max_critical)
            if b is not None
        ]
        return all(a <= b for a, b in zip(bounds, bounds[1:]))


class ThresholdConfig(BaseModel):
    """The single active set of threshold bands."""

    heart_rate: ThresholdBand = Field(
        default_factory=lambda: ThresholdBand(
            min_critical=50, min_low=60, max_low=100, max_critical=120
        )
    )
    blood_pressure_systolic: ThresholdBand = Field(
        default_factory=lambda: ThresholdBand(
            min_critical=80, min_low=90, max_low=140, max_critical=180
        )
    )
    blood_pressure_diastolic: ThresholdBand = Field(
        default_factory=lambda: ThresholdBand(
            min_critical=50, min_low=60, max_low=90, max_critical=120
        )
    )
    temperature: ThresholdBand = Field(
        default_factory=lambda: ThresholdBand(
            min_critical=35.0, min_low=36.0, max_low=37.5, max_critical=39.0
        )
    )
    oxygen_saturation: ThresholdBand = Field(
        default_factory=lambda: ThresholdBand(min_critical=90, min_low=94)
    )
    blood_glucose: ThresholdBand = Field(
        default_factory=lambda: ThresholdBand(
            min_critical=54, min_low=70, max_low=180, max_critical=250
        )
    )
    updated_at: datetime = Field(default_factory=_utcnow)

    def bands(self) -> dict[str, ThresholdBand]:
        return {name: getattr(self, name) for name in BAND_NAMES}


BAND_NAMES: tuple[str, ...] = (
    "heart_rate",
    "blood_pressure_systolic",
    "blood_pressure_diastolic",
    "temperature",
    "oxygen_saturation",
    "blood_glucose",
)


class Finding(BaseModel):
    """Outcome of one channel's rule list firing against a reading."""

    model_config = ConfigDict(frozen=True)

    channel: str = Field(description="Measurement field that produced the finding")
    metric: MetricType
    severity: Severity
    message: str
    value: float
    threshold_crossed: float


class Alert(BaseModel):
    """A detected out-of-band condition. Status changes produce a new copy."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    patient_id: str
    metric: MetricType
    severity: Severity
    message: str
    value: float
    threshold: float
    status: AlertStatus = AlertStatus.ACTIVE
    acknowledged_by: str | None = None
    acknowledged_at: AwareDatetime | None = None
    resolved_at: AwareDatetime | None = None
    created_at: AwareDatetime = Field(default_factory=_utcnow)
    updated_at: AwareDatetime = Field(default_factory=_utcnow)


class Patient(BaseModel):
    id: str = Field(default_factory=_new_id)
    first_name: str
    last_name: str
    doctor_id: str | None = Field(default=None, description="Attending doctor user id")
    is_active: bool = True
    risk_score: int = Field(default=0, ge=0, le=100)
    risk_level: RiskLevel = RiskLevel.LOW

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class RiskSnapshot(BaseModel):
    """Derived risk standing plus the counts it was computed from."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    risk_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    critical_active: int = 0
    high_active: int = 0
    medium_active: int = 0
    vitals_in_window: int = 0
    computed_at: datetime = Field(default_factory=_utcnow)


class ActorContext(BaseModel):
    """Identity of an already-authenticated caller."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class AlertFilter(BaseModel):
    """Criteria for listing alerts; every field narrows the result when set."""

    patient_id: str | None = None
    status: AlertStatus | None = None
    severity: Severity | None = None
    since: AwareDatetime | None = None
