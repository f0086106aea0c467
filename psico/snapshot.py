"""
Snapshot immutabile dei dati dello studio.

Il nucleo di calcolo (ledger, inflation, reports) lavora solo su questi valori:
non apre sessioni, non scrive sul DB. `load_snapshot` è l'unico punto di lettura.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import ValidationError
from .models import (
    FeeAdjustment,
    InflationRecord,
    Patient,
    PatientStatus,
    SessionType,
    Treatment,
    TreatmentSession,
)


# =========================
# Conversioni input
# =========================
def to_decimal(value: Any, what: str = "importo") -> Decimal:
    """Converte int/float/str/Decimal in Decimal passando da str (niente artefatti binari)."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{what} non valido: {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{what} non valido: {value!r}") from None
    if not result.is_finite():
        raise ValidationError(f"{what} non valido: {value!r}")
    return result


def parse_date(value: Any, what: str = "data") -> date:
    """Accetta date o stringa ISO 'YYYY-MM-DD'."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"{what} non valida: {value!r}")


# =========================
# Valori
# =========================
@dataclass(frozen=True)
class PatientState:
    id: str
    name: str
    status: PatientStatus = PatientStatus.ACTIVE
    contact: str | None = None
    father_name: str | None = None
    mother_name: str | None = None


@dataclass(frozen=True)
class TreatmentState:
    id: str
    patient_id: str
    start_date: date
    initial_fee: Decimal
    current_fee: Decimal
    is_active: bool = True
    end_date: date | None = None


@dataclass(frozen=True)
class SessionState:
    id: str
    treatment_id: str
    session_date: date
    fee_charged: Decimal
    is_paid: bool = False
    session_type: SessionType = SessionType.SESSION


@dataclass(frozen=True)
class AdjustmentState:
    id: str
    treatment_id: str
    previous_fee: Decimal
    new_fee: Decimal
    adjustment_percentage: Decimal
    adjustment_date: date
    created_at: datetime | None = None
    notes: str | None = None


@dataclass(frozen=True)
class InflationState:
    id: str
    month: date
    percentage: Decimal


@dataclass(frozen=True)
class Snapshot:
    patients: tuple[PatientState, ...] = field(default_factory=tuple)
    treatments: tuple[TreatmentState, ...] = field(default_factory=tuple)
    sessions: tuple[SessionState, ...] = field(default_factory=tuple)
    fee_adjustments: tuple[AdjustmentState, ...] = field(default_factory=tuple)
    inflation_records: tuple[InflationState, ...] = field(default_factory=tuple)

    def patient(self, patient_id: str) -> PatientState | None:
        return next((p for p in self.patients if p.id == patient_id), None)

    def treatment(self, treatment_id: str) -> TreatmentState | None:
        return next((t for t in self.treatments if t.id == treatment_id), None)

    def adjustment(self, adjustment_id: str) -> AdjustmentState | None:
        return next((a for a in self.fee_adjustments if a.id == adjustment_id), None)

    def adjustments_for(self, treatment_id: str) -> list[AdjustmentState]:
        return [a for a in self.fee_adjustments if a.treatment_id == treatment_id]


# =========================
# Lettura dal DB
# =========================
def patient_state(p: Patient) -> PatientState:
    return PatientState(
        id=p.id,
        name=p.name,
        status=p.status,
        contact=p.contact,
        father_name=p.father_name,
        mother_name=p.mother_name,
    )


def treatment_state(t: Treatment) -> TreatmentState:
    return TreatmentState(
        id=t.id,
        patient_id=t.patient_id,
        start_date=t.start_date,
        initial_fee=Decimal(t.initial_fee),
        current_fee=Decimal(t.current_fee),
        is_active=t.is_active,
        end_date=t.end_date,
    )


def session_state(s: TreatmentSession) -> SessionState:
    return SessionState(
        id=s.id,
        treatment_id=s.treatment_id,
        session_date=s.session_date,
        fee_charged=Decimal(s.fee_charged),
        is_paid=s.is_paid,
        session_type=s.session_type,
    )


def adjustment_state(a: FeeAdjustment) -> AdjustmentState:
    return AdjustmentState(
        id=a.id,
        treatment_id=a.treatment_id,
        previous_fee=Decimal(a.previous_fee),
        new_fee=Decimal(a.new_fee),
        adjustment_percentage=Decimal(a.adjustment_percentage),
        adjustment_date=a.adjustment_date,
        created_at=a.created_at,
        notes=a.notes,
    )


def inflation_state(r: InflationRecord) -> InflationState:
    return InflationState(id=r.id, month=r.month, percentage=Decimal(r.percentage))


def load_snapshot(s: Session) -> Snapshot:
    """Legge tutte le collezioni nello stato attuale della sessione."""
    return Snapshot(
        patients=tuple(patient_state(p) for p in s.scalars(select(Patient).order_by(Patient.name))),
        treatments=tuple(
            treatment_state(t) for t in s.scalars(select(Treatment).order_by(Treatment.start_date.desc()))
        ),
        sessions=tuple(
            session_state(x)
            for x in s.scalars(select(TreatmentSession).order_by(TreatmentSession.session_date.desc()))
        ),
        fee_adjustments=tuple(
            adjustment_state(a)
            for a in s.scalars(select(FeeAdjustment).order_by(FeeAdjustment.adjustment_date.desc()))
        ),
        inflation_records=tuple(
            inflation_state(r) for r in s.scalars(select(InflationRecord).order_by(InflationRecord.month.desc()))
        ),
    )
