from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import ledger, reports
from .db import Base, db_session, engine
from .errors import NotFoundError, ValidationError
from .inflation import normalize_month, running_accumulation
from .models import (
    FeeAdjustment,
    InflationRecord,
    Patient,
    PatientStatus,
    SessionType,
    Treatment,
    TreatmentSession,
)
from .snapshot import Snapshot, inflation_state, load_snapshot, parse_date, to_decimal

logger = logging.getLogger(__name__)


# =========================
# Bootstrap DB
# =========================
def init_db() -> None:
    """Crea le tabelle se non esistono."""
    Base.metadata.create_all(bind=engine)


# =========================
# Helper / DTO
# =========================
def _get(s: Session, model: type, entity: str, entity_id: str) -> Any:
    obj = s.get(model, entity_id)
    if obj is None:
        raise NotFoundError(entity, entity_id)
    return obj


def _enum(cls: type, value: Any, what: str) -> Any:
    try:
        return cls(value)
    except ValueError:
        raise ValidationError(f"{what} non valido: {value!r}") from None


def _positive(value: Any, what: str) -> Decimal:
    amount = to_decimal(value, what)
    if amount <= 0:
        raise ValidationError(f"{what} deve essere maggiore di zero.")
    return amount


def _num(value: Any) -> float | None:
    """Decimal -> float per i dict 'flat' (serializzabili JSON)."""
    return float(value) if value is not None else None


def _patient_dict(p: Patient) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "contact": p.contact,
        "father_name": p.father_name,
        "mother_name": p.mother_name,
        "status": p.status.value,
    }


def _treatment_dict(t: Treatment) -> dict:
    return {
        "id": t.id,
        "patient_id": t.patient_id,
        "start_date": t.start_date,
        "end_date": t.end_date,
        "initial_fee": _num(t.initial_fee),
        "current_fee": _num(t.current_fee),
        "is_active": t.is_active,
    }


def _session_dict(x: TreatmentSession) -> dict:
    return {
        "id": x.id,
        "treatment_id": x.treatment_id,
        "session_date": x.session_date,
        "session_type": x.session_type.value,
        "fee_charged": _num(x.fee_charged),
        "is_paid": x.is_paid,
    }


def _adjustment_dict(a: FeeAdjustment) -> dict:
    return {
        "id": a.id,
        "treatment_id": a.treatment_id,
        "previous_fee": _num(a.previous_fee),
        "new_fee": _num(a.new_fee),
        "adjustment_percentage": _num(a.adjustment_percentage),
        "adjustment_date": a.adjustment_date,
        "notes": a.notes,
    }


def _inflation_dict(r: InflationRecord) -> dict:
    return {"id": r.id, "month": r.month, "percentage": _num(r.percentage)}


# =========================
# Pazienti
# =========================
def create_patient(
    name: str,
    contact: str | None = None,
    father_name: str | None = None,
    mother_name: str | None = None,
    status: PatientStatus | str = PatientStatus.ACTIVE,
) -> str:
    if not name or not name.strip():
        raise ValidationError("Il nome del paziente è obbligatorio.")
    with db_session() as s:
        p = Patient(
            name=name.strip(),
            contact=contact,
            father_name=father_name,
            mother_name=mother_name,
            status=_enum(PatientStatus, status, "Stato"),
        )
        s.add(p)
        s.flush()
        return p.id


def update_patient(patient_id: str, **changes: Any) -> dict:
    allowed = {"name", "contact", "father_name", "mother_name", "status"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Campi non modificabili: {', '.join(sorted(unknown))}")

    with db_session() as s:
        p = _get(s, Patient, "Paziente", patient_id)
        if "name" in changes:
            if not changes["name"] or not changes["name"].strip():
                raise ValidationError("Il nome del paziente è obbligatorio.")
            p.name = changes["name"].strip()
        if "status" in changes:
            p.status = _enum(PatientStatus, changes["status"], "Stato")
        for key in ("contact", "father_name", "mother_name"):
            if key in changes:
                setattr(p, key, changes[key])
        s.flush()
        return _patient_dict(p)


def delete_patient(patient_id: str) -> None:
    """Elimina il paziente con trattamenti, prestazioni e aggiustamenti (cascade)."""
    with db_session() as s:
        s.delete(_get(s, Patient, "Paziente", patient_id))


def list_patients_flat() -> list[dict]:
    with db_session() as s:
        return [_patient_dict(p) for p in s.scalars(select(Patient).order_by(Patient.name))]


# =========================
# Trattamenti
# =========================
def create_treatment(
    patient_id: str,
    start_date: date | str,
    initial_fee: Any,
    current_fee: Any = None,
    end_date: date | str | None = None,
    is_active: bool = True,
) -> str:
    """current_fee parte da initial_fee se non indicato."""
    start = parse_date(start_date, "Data di inizio")
    end = parse_date(end_date, "Data di fine") if end_date else None
    initial = _positive(initial_fee, "Onorario iniziale")
    current = _positive(current_fee, "Onorario attuale") if current_fee is not None else initial

    with db_session() as s:
        _get(s, Patient, "Paziente", patient_id)
        t = Treatment(
            patient_id=patient_id,
            start_date=start,
            end_date=end,
            initial_fee=initial,
            current_fee=current,
            is_active=is_active,
        )
        s.add(t)
        s.flush()
        return t.id


def update_treatment(
    treatment_id: str,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
    is_active: bool | None = None,
    initial_fee: Any = None,
) -> dict:
    """Aggiorna date e stato. initial_fee è immutabile; current_fee passa solo dal ledger."""
    with db_session() as s:
        t = _get(s, Treatment, "Trattamento", treatment_id)
        if initial_fee is not None and to_decimal(initial_fee, "Onorario iniziale") != Decimal(t.initial_fee):
            raise ValidationError("L'onorario iniziale non si può modificare dopo la creazione.")
        if start_date is not None:
            t.start_date = parse_date(start_date, "Data di inizio")
        if end_date is not None:
            t.end_date = parse_date(end_date, "Data di fine")
        if is_active is not None:
            t.is_active = is_active
        s.flush()
        return _treatment_dict(t)


def close_treatment(treatment_id: str, end_date: date | str | None = None) -> dict:
    with db_session() as s:
        t = _get(s, Treatment, "Trattamento", treatment_id)
        t.is_active = False
        t.end_date = parse_date(end_date, "Data di fine") if end_date else date.today()
        s.flush()
        return _treatment_dict(t)


def delete_treatment(treatment_id: str) -> None:
    with db_session() as s:
        s.delete(_get(s, Treatment, "Trattamento", treatment_id))


def list_treatments_flat(patient_id: str | None = None) -> list[dict]:
    with db_session() as s:
        q = select(Treatment).order_by(Treatment.start_date.desc())
        if patient_id is not None:
            q = q.where(Treatment.patient_id == patient_id)
        return [_treatment_dict(t) for t in s.scalars(q)]


# =========================
# Prestazioni
# =========================
def record_session(
    treatment_id: str,
    session_date: date | str,
    session_type: SessionType | str = SessionType.SESSION,
    fee_charged: Any = None,
    is_paid: bool = False,
) -> str:
    """Registra una prestazione; l'onorario applicato di default è il current_fee del trattamento."""
    when = parse_date(session_date, "Data della prestazione")
    with db_session() as s:
        t = _get(s, Treatment, "Trattamento", treatment_id)
        fee = _positive(fee_charged, "Onorario") if fee_charged is not None else Decimal(t.current_fee)
        x = TreatmentSession(
            treatment_id=treatment_id,
            session_date=when,
            session_type=_enum(SessionType, session_type, "Tipo prestazione"),
            fee_charged=fee,
            is_paid=is_paid,
        )
        s.add(x)
        s.flush()
        return x.id


def update_session(session_id: str, **changes: Any) -> dict:
    """Corregge data, tipo, onorario applicato o pagamento di una prestazione già registrata."""
    allowed = {"session_date", "session_type", "fee_charged", "is_paid"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Campi non modificabili: {', '.join(sorted(unknown))}")

    with db_session() as s:
        x = _get(s, TreatmentSession, "Prestazione", session_id)
        if "session_date" in changes:
            x.session_date = parse_date(changes["session_date"], "Data della prestazione")
        if "session_type" in changes:
            x.session_type = _enum(SessionType, changes["session_type"], "Tipo prestazione")
        if "fee_charged" in changes:
            x.fee_charged = _positive(changes["fee_charged"], "Onorario")
        if "is_paid" in changes:
            x.is_paid = bool(changes["is_paid"])
        s.flush()
        return _session_dict(x)


def toggle_session_paid(session_id: str) -> bool:
    """Inverte lo stato di pagamento; ritorna il nuovo valore."""
    with db_session() as s:
        x = _get(s, TreatmentSession, "Prestazione", session_id)
        x.is_paid = not x.is_paid
        return x.is_paid


def delete_session(session_id: str) -> None:
    with db_session() as s:
        s.delete(_get(s, TreatmentSession, "Prestazione", session_id))


def list_sessions_flat(treatment_id: str | None = None) -> list[dict]:
    with db_session() as s:
        q = select(TreatmentSession).order_by(TreatmentSession.session_date.desc())
        if treatment_id is not None:
            q = q.where(TreatmentSession.treatment_id == treatment_id)
        return [_session_dict(x) for x in s.scalars(q)]


# =========================
# Inflazione
# =========================
def _ensure_month_free(s: Session, month: date, exclude_id: str | None = None) -> None:
    q = select(InflationRecord.id).where(InflationRecord.month == month)
    if exclude_id is not None:
        q = q.where(InflationRecord.id != exclude_id)
    if s.execute(q).first() is not None:
        raise ValidationError(f"Esiste già un valore di inflazione per {month.strftime('%m/%Y')}.")


def record_inflation(month: date | str, percentage: Any) -> str:
    m = normalize_month(month)
    pct = to_decimal(percentage, "Percentuale")
    with db_session() as s:
        _ensure_month_free(s, m)
        r = InflationRecord(month=m, percentage=pct)
        s.add(r)
        s.flush()
        return r.id


def update_inflation(record_id: str, month: date | str | None = None, percentage: Any = None) -> dict:
    with db_session() as s:
        r = _get(s, InflationRecord, "Inflazione", record_id)
        if month is not None:
            m = normalize_month(month)
            _ensure_month_free(s, m, exclude_id=record_id)
            r.month = m
        if percentage is not None:
            r.percentage = to_decimal(percentage, "Percentuale")
        s.flush()
        return _inflation_dict(r)


def delete_inflation(record_id: str) -> None:
    with db_session() as s:
        s.delete(_get(s, InflationRecord, "Inflazione", record_id))


def list_inflation_flat() -> list[dict]:
    with db_session() as s:
        return [_inflation_dict(r) for r in s.scalars(select(InflationRecord).order_by(InflationRecord.month.desc()))]


def inflation_series() -> list[dict]:
    """Serie cronologica con inflazione accumulata progressiva."""
    with db_session() as s:
        records = [inflation_state(r) for r in s.scalars(select(InflationRecord))]
    return [
        {"id": r.id, "month": r.month, "percentage": _num(r.percentage), "accumulated": _num(total)}
        for r, total in running_accumulation(records)
    ]


# =========================
# Ledger onorari (use case core)
# =========================
def _write_change(s: Session, change: ledger.LedgerChange) -> None:
    """Applica al DB le scritture calcolate dal ledger (stessa transazione)."""
    if change.removed_adjustment_id is not None:
        s.delete(_get(s, FeeAdjustment, "Aggiustamento", change.removed_adjustment_id))

    adj = change.adjustment
    if adj is not None:
        row = s.get(FeeAdjustment, adj.id)
        if row is None:
            s.add(
                FeeAdjustment(
                    id=adj.id,
                    treatment_id=adj.treatment_id,
                    previous_fee=adj.previous_fee,
                    new_fee=adj.new_fee,
                    adjustment_percentage=adj.adjustment_percentage,
                    adjustment_date=adj.adjustment_date,
                    notes=adj.notes,
                    created_at=adj.created_at,
                )
            )
        else:
            row.new_fee = adj.new_fee
            row.adjustment_percentage = adj.adjustment_percentage
            row.adjustment_date = adj.adjustment_date

    if change.current_fee is not None:
        t = _get(s, Treatment, "Trattamento", change.treatment_id)
        t.current_fee = change.current_fee

    s.flush()
    logger.info(
        "Ledger trattamento %s: aggiustamento=%s rimosso=%s current_fee=%s",
        change.treatment_id,
        adj.id if adj is not None else None,
        change.removed_adjustment_id,
        change.current_fee if change.current_fee is not None else "invariato",
    )


def _change_result(s: Session, change: ledger.LedgerChange) -> dict:
    t = _get(s, Treatment, "Trattamento", change.treatment_id)
    adj = s.get(FeeAdjustment, change.adjustment.id) if change.adjustment is not None else None
    return {
        "treatment_id": t.id,
        "current_fee": _num(t.current_fee),
        "current_fee_changed": change.current_fee is not None,
        "adjustment": _adjustment_dict(adj) if adj is not None else None,
        "removed_adjustment_id": change.removed_adjustment_id,
    }


def apply_fee_adjustment(
    treatment_id: str,
    new_fee: Any,
    effective_date: date | str,
    notes: str | None = None,
) -> dict:
    """
    Use case: applicare un aggiustamento di onorario.
    - crea il record in fee_adjustments con la data di vigenza indicata
    - aggiorna il current_fee del trattamento
    Tutto o niente: un errore annulla entrambe le scritture.
    """
    with db_session() as s:
        change = ledger.apply_adjustment(load_snapshot(s), treatment_id, new_fee, effective_date, notes=notes)
        _write_change(s, change)
        return _change_result(s, change)


def edit_fee_adjustment(adjustment_id: str, new_fee: Any, effective_date: date | str) -> dict:
    """Use case: correggere un aggiustamento (se è il più recente, aggiorna anche current_fee)."""
    with db_session() as s:
        change = ledger.edit_adjustment(load_snapshot(s), adjustment_id, new_fee, effective_date)
        _write_change(s, change)
        return _change_result(s, change)


def delete_fee_adjustment(adjustment_id: str) -> dict:
    """Use case: eliminare un aggiustamento (se era il più recente, l'onorario torna al precedente)."""
    with db_session() as s:
        change = ledger.delete_adjustment(load_snapshot(s), adjustment_id)
        _write_change(s, change)
        return _change_result(s, change)


def list_fee_adjustments_flat(treatment_id: str) -> list[dict]:
    with db_session() as s:
        _get(s, Treatment, "Trattamento", treatment_id)
        q = (
            select(FeeAdjustment)
            .where(FeeAdjustment.treatment_id == treatment_id)
            .order_by(FeeAdjustment.adjustment_date.desc(), FeeAdjustment.created_at.desc())
        )
        return [_adjustment_dict(a) for a in s.scalars(q)]


# =========================
# Viste / report
# =========================
def load_app_snapshot() -> Snapshot:
    with db_session() as s:
        return load_snapshot(s)


def _suggestion_dict(sg: ledger.FeeSuggestion) -> dict:
    return {
        "treatment_id": sg.treatment_id,
        "current_fee": _num(sg.current_fee),
        "reference_date": sg.reference_date,
        "accumulated_inflation": _num(sg.accumulated_inflation),
        "suggested_fee": _num(sg.suggested_fee),
        "suggested_percentage": _num(sg.suggested_percentage),
        "status": sg.status.value,
    }


def suggest_fee(treatment_id: str) -> dict:
    """Onorario suggerito per inflazione (sola lettura, nessuna scrittura)."""
    snap = load_app_snapshot()
    treatment = snap.treatment(treatment_id)
    if treatment is None:
        raise NotFoundError("Trattamento", treatment_id)
    suggestion = ledger.suggest_next_fee(treatment, snap.adjustments_for(treatment_id), snap.inflation_records)
    return _suggestion_dict(suggestion)


def fee_overview_flat(query: str | None = None) -> list[dict]:
    return [
        {
            "patient_id": row.treatment.patient_id,
            "patient_name": row.patient.name if row.patient else None,
            "adjustments_count": row.adjustments_count,
            **_suggestion_dict(row.suggestion),
        }
        for row in reports.fee_overview(load_app_snapshot(), query)
    ]


def pending_payments_flat() -> list[dict]:
    return [
        {
            "patient_id": g.patient.id,
            "patient_name": g.patient.name,
            "treatment_id": g.treatment.id,
            "sessions": [
                {
                    "id": x.id,
                    "session_date": x.session_date,
                    "session_type": x.session_type.value,
                    "fee_charged": _num(x.fee_charged),
                }
                for x in g.sessions
            ],
            "total": _num(g.total),
        }
        for g in reports.pending_by_patient(load_app_snapshot())
    ]


def billing_summary_flat(year: int | None = None, month: int | None = None, patient_id: str | None = None) -> dict:
    snap = load_app_snapshot()
    summary = reports.billing_summary(snap.sessions, year=year, month=month, patient_id=patient_id, snapshot=snap)
    return {
        "total_sessions": summary.total_sessions,
        "paid_sessions": summary.paid_sessions,
        "worked": _num(summary.worked),
        "collected": _num(summary.collected),
        "pending": _num(summary.pending),
        "average_fee": _num(summary.average_fee),
        "collection_rate": _num(summary.collection_rate),
        "by_month": {
            key: {
                "total_sessions": b.total_sessions,
                "paid_sessions": b.paid_sessions,
                "worked": _num(b.worked),
                "collected": _num(b.collected),
                "pending": _num(b.pending),
                "average": _num(b.average),
            }
            for key, b in summary.by_month.items()
        },
        "top_patients": [
            {
                "patient_id": tp.patient.id,
                "patient_name": tp.patient.name,
                "total": _num(tp.total),
                "sessions": tp.sessions,
            }
            for tp in summary.top_patients
        ],
    }
