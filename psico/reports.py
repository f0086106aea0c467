from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from .ledger import FeeSuggestion, suggest_next_fee
from .snapshot import PatientState, SessionState, Snapshot, TreatmentState

_ZERO = Decimal("0")
TOP_PATIENTS_LIMIT = 5


@dataclass(frozen=True)
class PendingGroup:
    patient: PatientState
    treatment: TreatmentState
    sessions: tuple[SessionState, ...]
    total: Decimal


@dataclass(frozen=True)
class MonthBucket:
    total_sessions: int = 0
    paid_sessions: int = 0
    worked: Decimal = _ZERO
    collected: Decimal = _ZERO

    @property
    def pending(self) -> Decimal:
        return self.worked - self.collected

    @property
    def average(self) -> Decimal:
        return (self.worked / self.total_sessions) if self.total_sessions else _ZERO


@dataclass(frozen=True)
class TopPatient:
    patient: PatientState
    total: Decimal
    sessions: int


@dataclass(frozen=True)
class BillingSummary:
    total_sessions: int
    paid_sessions: int
    worked: Decimal
    collected: Decimal
    pending: Decimal
    average_fee: Decimal
    collection_rate: Decimal
    by_month: dict[str, MonthBucket] = field(default_factory=dict)
    top_patients: tuple[TopPatient, ...] = ()


@dataclass(frozen=True)
class FeeOverviewRow:
    patient: PatientState | None
    treatment: TreatmentState
    suggestion: FeeSuggestion
    adjustments_count: int


def pending_by_patient(snapshot: Snapshot) -> list[PendingGroup]:
    """Prestazioni non pagate raggruppate per paziente, totale decrescente."""
    unpaid = sorted((s for s in snapshot.sessions if not s.is_paid), key=lambda s: s.session_date)

    groups: dict[str, tuple[PatientState, TreatmentState, list[SessionState]]] = {}
    for session in unpaid:
        treatment = snapshot.treatment(session.treatment_id)
        if treatment is None:
            continue
        patient = snapshot.patient(treatment.patient_id)
        if patient is None:
            continue
        groups.setdefault(patient.id, (patient, treatment, []))[2].append(session)

    result = [
        PendingGroup(
            patient=patient,
            treatment=treatment,
            sessions=tuple(sessions),
            total=sum((s.fee_charged for s in sessions), _ZERO),
        )
        for patient, treatment, sessions in groups.values()
    ]
    return sorted(result, key=lambda g: g.total, reverse=True)


def _top_patients(sessions: list[SessionState], snapshot: Snapshot) -> tuple[TopPatient, ...]:
    """Pazienti con più fatturato sul periodo (max TOP_PATIENTS_LIMIT)."""
    totals: dict[str, tuple[PatientState, Decimal, int]] = {}
    for s in sessions:
        treatment = snapshot.treatment(s.treatment_id)
        patient = snapshot.patient(treatment.patient_id) if treatment is not None else None
        if patient is None:
            continue
        _, total, count = totals.get(patient.id, (patient, _ZERO, 0))
        totals[patient.id] = (patient, total + s.fee_charged, count + 1)

    ranked = sorted(totals.values(), key=lambda row: row[1], reverse=True)
    return tuple(TopPatient(patient=p, total=t, sessions=n) for p, t, n in ranked[:TOP_PATIENTS_LIMIT])


def billing_summary(
    sessions: tuple[SessionState, ...] | list[SessionState],
    year: int | None = None,
    month: int | None = None,
    patient_id: str | None = None,
    snapshot: Snapshot | None = None,
) -> BillingSummary:
    """
    Metriche di fatturazione sul periodo (anno, eventualmente mese).
    Il filtro per paziente richiede lo snapshot per risalire ai trattamenti.
    """
    filtered = list(sessions)
    if patient_id is not None:
        if snapshot is None:
            raise ValueError("snapshot richiesto per filtrare per paziente")
        own = {t.id for t in snapshot.treatments if t.patient_id == patient_id}
        filtered = [s for s in filtered if s.treatment_id in own]
    if year is not None:
        filtered = [s for s in filtered if s.session_date.year == year]
        if month is not None:
            filtered = [s for s in filtered if s.session_date.month == month]

    paid = [s for s in filtered if s.is_paid]
    worked = sum((s.fee_charged for s in filtered), _ZERO)
    collected = sum((s.fee_charged for s in paid), _ZERO)

    by_month: dict[str, MonthBucket] = {}
    for s in sorted(filtered, key=lambda s: s.session_date):
        key = s.session_date.strftime("%Y-%m")
        b = by_month.get(key, MonthBucket())
        by_month[key] = MonthBucket(
            total_sessions=b.total_sessions + 1,
            paid_sessions=b.paid_sessions + (1 if s.is_paid else 0),
            worked=b.worked + s.fee_charged,
            collected=b.collected + (s.fee_charged if s.is_paid else _ZERO),
        )

    return BillingSummary(
        total_sessions=len(filtered),
        paid_sessions=len(paid),
        worked=worked,
        collected=collected,
        pending=worked - collected,
        average_fee=(worked / len(filtered)) if filtered else _ZERO,
        collection_rate=(collected / worked * 100) if worked else _ZERO,
        by_month=by_month,
        top_patients=_top_patients(filtered, snapshot) if snapshot is not None else (),
    )


def fee_overview(snapshot: Snapshot, query: str | None = None) -> list[FeeOverviewRow]:
    """Trattamenti attivi con onorario suggerito; prima quelli con più inflazione accumulata."""
    needle = (query or "").strip().lower()
    rows: list[FeeOverviewRow] = []
    for treatment in snapshot.treatments:
        if not treatment.is_active:
            continue
        patient = snapshot.patient(treatment.patient_id)
        if needle and (patient is None or needle not in patient.name.lower()):
            continue
        adjustments = snapshot.adjustments_for(treatment.id)
        rows.append(
            FeeOverviewRow(
                patient=patient,
                treatment=treatment,
                suggestion=suggest_next_fee(treatment, adjustments, snapshot.inflation_records),
                adjustments_count=len(adjustments),
            )
        )
    return sorted(rows, key=lambda r: r.suggestion.accumulated_inflation, reverse=True)
