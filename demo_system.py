"""
End-to-end walkthrough of the vitals engine against the in-memory repositories.

This script exercises:
1. Configuration loading
2. Threshold defaults and an administrator update
3. Ingestion of normal and out-of-band readings
4. Alert acknowledgment and resolution
5. Risk recomputation after every event

Run with: uv run python demo_system.py
"""

import asyncio
from datetime import UTC, datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vitalguard.config import get_config
from vitalguard.domain.errors import EngineError
from vitalguard.domain.models import (
    ActorContext,
    AlertFilter,
    AlertStatus,
    Measurement,
    Patient,
    UserRole,
)
from vitalguard.logging_config import configure_logging
from vitalguard.services import Repositories, VitalsEngine

console = Console()

ADMIN = ActorContext(user_id="admin-1", role=UserRole.ADMIN)
DOCTOR = ActorContext(user_id="doctor-1", role=UserRole.DOCTOR)


def _patients() -> list[Patient]:
    return [
        Patient(id="p-stable", first_name="Maria", last_name="Garcia", doctor_id=DOCTOR.user_id),
        Patient(id="p-critical", first_name="Robert", last_name="Taylor", doctor_id=DOCTOR.user_id),
    ]


def _alerts_table(title: str, alerts) -> Table:
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Severity", style="magenta")
    table.add_column("Message", style="white")
    table.add_column("Status", style="yellow")
    for alert in alerts:
        table.add_row(alert.metric.value, alert.severity.value, alert.message, alert.status.value)
    return table


async def _print_risk(engine: VitalsEngine) -> None:
    table = Table(title="Risk Snapshot")
    table.add_column("Patient", style="cyan")
    table.add_column("Score", style="green")
    table.add_column("Level", style="magenta")
    for patient_id in ("p-stable", "p-critical"):
        patient = await engine.repositories.patients.find_by_id(patient_id)
        if patient is not None:
            table.add_row(patient.full_name, str(patient.risk_score), patient.risk_level.value)
    console.print(table)


async def run_demo() -> None:
    config = get_config()
    configure_logging(config.logging)
    console.print(Panel("🩺 VitalGuard - Engine Walkthrough", style="bold blue"))

    engine = VitalsEngine(Repositories.in_memory(_patients()), config=config)

    console.print(Panel("🔧 Thresholds", style="blue"))
    thresholds = await engine.get_thresholds()
    bands = Table(title="Active Threshold Bands")
    for column in ("Band", "min_critical", "min_low", "max_low", "max_critical"):
        bands.add_column(column)
    for name, band in thresholds.bands().items():
        bands.add_row(
            name,
            *(str(v) if v is not None else "-" for v in band.model_dump().values()),
        )
    console.print(bands)

    await engine.update_thresholds({"temperature": {"max_low": 37.8}}, ADMIN)
    console.print("✅ Admin raised the temperature advisory limit to 37.8°C", style="green")

    console.print(Panel("📊 Ingestion", style="blue"))
    now = datetime.now(UTC)
    for day in range(14):
        await engine.ingest(
            Measurement(
                patient_id="p-stable",
                heart_rate=72,
                blood_pressure_systolic=118,
                blood_pressure_diastolic=76,
                temperature=36.8,
                oxygen_saturation=98,
                recorded_at=now - timedelta(days=day),
            )
        )
    console.print("✅ 14 normal readings ingested for Maria Garcia", style="green")

    alerts = await engine.ingest(
        {
            "patient_id": "p-critical",
            "heart_rate": 128,
            "blood_pressure_systolic": 165,
            "temperature": 38.2,
            "oxygen_saturation": 85,
            "blood_glucose": 310,
        },
        actor=DOCTOR,
    )
    console.print(_alerts_table("Alerts raised for Robert Taylor", alerts))
    await _print_risk(engine)

    console.print(Panel("🚨 Alert Lifecycle", style="blue"))
    oxygen_alert = next(a for a in alerts if a.metric.value == "OXYGEN")
    await engine.transition_alert(oxygen_alert.id, AlertStatus.ACKNOWLEDGED, DOCTOR)
    await engine.transition_alert(oxygen_alert.id, AlertStatus.RESOLVED, DOCTOR)
    console.print("✅ SpO2 alert acknowledged and resolved", style="green")

    try:
        await engine.transition_alert(oxygen_alert.id, AlertStatus.ACKNOWLEDGED, DOCTOR)
    except EngineError as e:
        console.print(f"🛡️ Rejected as expected ({e.code}): {e}", style="yellow")

    active = await engine.list_alerts(AlertFilter(status=AlertStatus.ACTIVE), DOCTOR)
    console.print(_alerts_table("Still Active", active))
    await _print_risk(engine)


if __name__ == "__main__":
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        console.print("\n👋 Demo stopped by user", style="yellow")
