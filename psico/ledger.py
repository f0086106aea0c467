"""
Registro degli aggiustamenti di onorario.

Regola: current_fee del trattamento = new_fee dell'aggiustamento più recente
(per adjustment_date), oppure initial_fee se non ce ne sono.

Le funzioni sono pure: ricevono uno Snapshot e restituiscono un LedgerChange
con le scritture da eseguire. Nessuno stato tra una chiamata e l'altra.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from .errors import NotFoundError, ValidationError
from .inflation import FeeStatus, accumulate_since, fee_status
from .models import new_uuid
from .snapshot import (
    AdjustmentState,
    InflationState,
    Snapshot,
    TreatmentState,
    parse_date,
    to_decimal,
)

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")
_UNIT = Decimal("1")


# =========================
# DTO
# =========================
@dataclass(frozen=True)
class LedgerChange:
    """Scritture da applicare: aggiustamento inserito/aggiornato o rimosso, e nuovo current_fee (None = invariato)."""
    treatment_id: str
    adjustment: AdjustmentState | None = None
    removed_adjustment_id: str | None = None
    current_fee: Decimal | None = None


@dataclass(frozen=True)
class FeeSuggestion:
    treatment_id: str
    current_fee: Decimal
    reference_date: date
    accumulated_inflation: Decimal
    suggested_fee: Decimal
    suggested_percentage: Decimal
    status: FeeStatus


# =========================
# Helper
# =========================
def round2(value: Decimal) -> Decimal:
    rounded = value.quantize(_CENT, rounding=ROUND_HALF_UP)
    # niente -0.00 per variazioni minime al ribasso
    return rounded.copy_abs() if rounded == 0 else rounded


def _positive_fee(value: Any) -> Decimal:
    fee = to_decimal(value, "onorario")
    if fee <= 0:
        raise ValidationError("L'onorario deve essere maggiore di zero.")
    return fee


def adjustment_percentage(previous_fee: Decimal, new_fee: Decimal) -> Decimal:
    if previous_fee == 0:
        raise ValidationError("Onorario di riferimento pari a zero: impossibile calcolare la variazione.")
    return round2((new_fee - previous_fee) / previous_fee * 100)


def _latest_key(a: AdjustmentState) -> tuple[date, datetime, str]:
    # a parità di data vince il più recente inserito, poi l'id
    return a.adjustment_date, a.created_at or datetime.min, a.id


def sorted_adjustments(adjustments: Iterable[AdjustmentState]) -> list[AdjustmentState]:
    """Dal più recente al più vecchio."""
    return sorted(adjustments, key=_latest_key, reverse=True)


def latest_adjustment(
    adjustments: Iterable[AdjustmentState], treatment_id: str | None = None
) -> AdjustmentState | None:
    if treatment_id is not None:
        adjustments = [a for a in adjustments if a.treatment_id == treatment_id]
    ordered = sorted_adjustments(adjustments)
    return ordered[0] if ordered else None


def _get_treatment(snapshot: Snapshot, treatment_id: str) -> TreatmentState:
    t = snapshot.treatment(treatment_id)
    if t is None:
        raise NotFoundError("Trattamento", treatment_id)
    return t


def _get_adjustment(snapshot: Snapshot, adjustment_id: str) -> AdjustmentState:
    a = snapshot.adjustment(adjustment_id)
    if a is None:
        raise NotFoundError("Aggiustamento", adjustment_id)
    return a


# =========================
# Operazioni
# =========================
def apply_adjustment(
    snapshot: Snapshot,
    treatment_id: str,
    new_fee: Any,
    effective_date: date | str,
    notes: str | None = None,
    adjustment_id: str | None = None,
    created_at: datetime | None = None,
) -> LedgerChange:
    """
    Nuovo aggiustamento a partire dal current_fee del trattamento.
    - previous_fee = current_fee attuale
    - current_fee diventa new_fee (anche se la data di vigenza è retroattiva)
    """
    fee = _positive_fee(new_fee)
    when = parse_date(effective_date, "Data di vigenza")
    treatment = _get_treatment(snapshot, treatment_id)

    previous_fee = treatment.current_fee
    pct = adjustment_percentage(previous_fee, fee)

    latest = latest_adjustment(snapshot.fee_adjustments, treatment_id)
    if latest is not None and when < latest.adjustment_date:
        logger.warning(
            "Aggiustamento retroattivo su trattamento %s: vigenza %s precedente all'ultimo (%s)",
            treatment_id, when, latest.adjustment_date,
        )

    adjustment = AdjustmentState(
        id=adjustment_id or new_uuid(),
        treatment_id=treatment_id,
        previous_fee=previous_fee,
        new_fee=fee,
        adjustment_percentage=pct,
        adjustment_date=when,
        created_at=created_at or datetime.utcnow(),
        notes=notes,
    )
    return LedgerChange(treatment_id=treatment_id, adjustment=adjustment, current_fee=fee)


def edit_adjustment(
    snapshot: Snapshot,
    adjustment_id: str,
    new_fee: Any,
    effective_date: date | str,
) -> LedgerChange:
    """
    Modifica nuovo onorario e data di vigenza di un aggiustamento esistente.
    La percentuale si ricalcola sul previous_fee memorizzato (base fissa).
    Se dopo la modifica è il più recente, current_fee = new_fee.
    """
    fee = _positive_fee(new_fee)
    when = parse_date(effective_date, "Data di vigenza")
    current = _get_adjustment(snapshot, adjustment_id)
    treatment = _get_treatment(snapshot, current.treatment_id)

    edited = replace(
        current,
        new_fee=fee,
        adjustment_date=when,
        adjustment_percentage=adjustment_percentage(current.previous_fee, fee),
    )

    before = snapshot.adjustments_for(treatment.id)
    after = [edited if a.id == adjustment_id else a for a in before]
    latest_before = latest_adjustment(before)
    latest_after = latest_adjustment(after)

    current_fee: Decimal | None = None
    if latest_after is not None and latest_after.id == adjustment_id:
        current_fee = fee
    elif latest_before is not None and latest_before.id == adjustment_id and latest_after is not None:
        # era il più recente ed è stato spostato indietro: il nuovo ultimo detta il fee
        current_fee = latest_after.new_fee
        logger.info(
            "Trattamento %s: current_fee riallineato a %s (nuovo ultimo aggiustamento %s)",
            treatment.id, current_fee, latest_after.id,
        )

    return LedgerChange(treatment_id=treatment.id, adjustment=edited, current_fee=current_fee)


def delete_adjustment(snapshot: Snapshot, adjustment_id: str) -> LedgerChange:
    """Se era il più recente, current_fee torna al precedente new_fee o a initial_fee."""
    target = _get_adjustment(snapshot, adjustment_id)
    treatment = _get_treatment(snapshot, target.treatment_id)

    ordered = sorted_adjustments(snapshot.adjustments_for(treatment.id))
    current_fee: Decimal | None = None
    if ordered[0].id == adjustment_id:
        current_fee = ordered[1].new_fee if len(ordered) > 1 else treatment.initial_fee
        logger.info("Trattamento %s: current_fee ripristinato a %s", treatment.id, current_fee)

    return LedgerChange(
        treatment_id=treatment.id,
        removed_adjustment_id=adjustment_id,
        current_fee=current_fee,
    )


def suggest_next_fee(
    treatment: TreatmentState,
    adjustments: Iterable[AdjustmentState],
    inflation_records: Iterable[InflationState],
) -> FeeSuggestion:
    """
    Onorario suggerito: current_fee * (1 + inflazione accumulata / 100), arrotondato all'unità.
    Riferimento: data dell'ultimo aggiustamento, altrimenti inizio trattamento.
    """
    latest = latest_adjustment(adjustments, treatment.id)
    reference = latest.adjustment_date if latest is not None else treatment.start_date
    accumulated = accumulate_since(inflation_records, reference)
    suggested = (treatment.current_fee * (1 + accumulated / 100)).quantize(_UNIT, rounding=ROUND_HALF_UP)

    return FeeSuggestion(
        treatment_id=treatment.id,
        current_fee=treatment.current_fee,
        reference_date=reference,
        accumulated_inflation=accumulated,
        suggested_fee=suggested,
        suggested_percentage=accumulated,
        status=fee_status(accumulated),
    )
