"""
Calcolo dell'inflazione accumulata.

L'accumulo è una somma semplice delle percentuali mensili (non composta):
la composizione avviene una sola volta, quando si applica il totale a un onorario.
"""
from __future__ import annotations

import enum
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Iterator

from . import config
from .errors import ValidationError
from .snapshot import InflationState

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})(?:-(\d{2}))?$")


class FeeStatus(enum.Enum):
    OK = "ok"
    REVIEW = "review"
    ADJUST = "adjust"


def normalize_month(value: date | str) -> date:
    """Riporta una data (o 'YYYY-MM' / 'YYYY-MM-DD') al primo giorno del mese."""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.replace(day=1)
    if isinstance(value, str):
        m = _MONTH_RE.match(value.strip())
        if m:
            try:
                return date(int(m.group(1)), int(m.group(2)), int(m.group(3) or 1)).replace(day=1)
            except ValueError:
                pass
    raise ValidationError(f"Mese non valido: {value!r}")


def accumulate_since(records: Iterable[InflationState], since_date: date) -> Decimal:
    """Somma le percentuali dei mesi >= since_date. Nessun record => 0."""
    return sum((r.percentage for r in records if r.month >= since_date), Decimal("0"))


def running_accumulation(records: Iterable[InflationState]) -> Iterator[tuple[InflationState, Decimal]]:
    """
    Coppie (record, totale progressivo) in ordine cronologico.

    I mesi duplicati non vengono deduplicati: l'unicità è un vincolo del DB.
    """
    total = Decimal("0")
    for r in sorted(records, key=lambda r: r.month):
        total += r.percentage
        yield r, total


def fee_status(accumulated: Decimal) -> FeeStatus:
    """Semaforo: OK fino alla soglia di revisione, REVIEW fino a quella di adeguamento."""
    if accumulated <= config.FEE_STATUS_REVIEW_THRESHOLD:
        return FeeStatus.OK
    if accumulated <= config.FEE_STATUS_ADJUST_THRESHOLD:
        return FeeStatus.REVIEW
    return FeeStatus.ADJUST
