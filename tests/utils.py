"""Costruttori di valori per i test del nucleo di calcolo."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from psico.snapshot import (
    AdjustmentState,
    InflationState,
    PatientState,
    SessionState,
    Snapshot,
    TreatmentState,
)


def d(value: str) -> date:
    return date.fromisoformat(value)


def treatment(
    id: str = "t1",
    patient_id: str = "p1",
    start: str = "2023-12-01",
    initial_fee: str = "10000",
    current_fee: str | None = None,
    is_active: bool = True,
) -> TreatmentState:
    return TreatmentState(
        id=id,
        patient_id=patient_id,
        start_date=d(start),
        initial_fee=Decimal(initial_fee),
        current_fee=Decimal(current_fee if current_fee is not None else initial_fee),
        is_active=is_active,
    )


def adjustment(
    id: str,
    previous_fee: str,
    new_fee: str,
    on: str,
    treatment_id: str = "t1",
    created_at: datetime | None = None,
) -> AdjustmentState:
    prev, new = Decimal(previous_fee), Decimal(new_fee)
    return AdjustmentState(
        id=id,
        treatment_id=treatment_id,
        previous_fee=prev,
        new_fee=new,
        adjustment_percentage=((new - prev) / prev * 100).quantize(Decimal("0.01")),
        adjustment_date=d(on),
        created_at=created_at,
    )


def inflation(month: str, pct: str, id: str | None = None) -> InflationState:
    return InflationState(id=id or f"inf-{month}", month=d(f"{month}-01"), percentage=Decimal(pct))


def patient(id: str = "p1", name: str = "Martina López") -> PatientState:
    return PatientState(id=id, name=name)


def session(
    id: str,
    on: str,
    fee: str,
    treatment_id: str = "t1",
    is_paid: bool = False,
) -> SessionState:
    return SessionState(id=id, treatment_id=treatment_id, session_date=d(on), fee_charged=Decimal(fee), is_paid=is_paid)


def snapshot(**collections) -> Snapshot:
    return Snapshot(**{k: tuple(v) for k, v in collections.items()})
