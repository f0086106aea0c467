from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select

from .db import db_session
from .ledger import adjustment_percentage
from .models import (
    FeeAdjustment,
    InflationRecord,
    Patient,
    PatientStatus,
    SessionType,
    Treatment,
    TreatmentSession,
)


def seed_base() -> None:
    """
    Popola dati demo (idempotente):
    - inflazione mensile 2024
    - due pazienti con trattamento attivo
    - alcune prestazioni, una sola con aggiustamento
    """
    with db_session() as s:
        # Inflazione
        mensili = ["20.6", "13.2", "11.0", "8.8", "4.2", "4.6", "4.0", "4.2", "3.5", "2.7", "2.4", "2.7"]
        for i, pct in enumerate(mensili, start=1):
            month = date(2024, i, 1)
            if s.execute(select(InflationRecord).where(InflationRecord.month == month)).scalar_one_or_none() is None:
                s.add(InflationRecord(month=month, percentage=Decimal(pct)))

        # Pazienti
        pazienti = [
            ("Martina López", "11 5555-0101", "Jorge López", "Ana Pérez", date(2024, 1, 8), Decimal("10000")),
            ("Tomás García", "11 5555-0202", None, "Laura Díaz", date(2024, 4, 2), Decimal("12000")),
        ]
        for name, contact, father, mother, start, fee in pazienti:
            if s.execute(select(Patient).where(Patient.name == name)).scalar_one_or_none() is not None:
                continue
            p = Patient(
                name=name, contact=contact, father_name=father, mother_name=mother, status=PatientStatus.ACTIVE
            )
            t = Treatment(start_date=start, initial_fee=fee, current_fee=fee, is_active=True)
            p.treatments.append(t)
            s.add(p)

            t.sessions.append(
                TreatmentSession(session_date=start, session_type=SessionType.PARENT_INTERVIEW, fee_charged=fee, is_paid=True)
            )
            t.sessions.append(
                TreatmentSession(session_date=date(start.year, start.month + 1, 5), fee_charged=fee, is_paid=False)
            )

        s.flush()

        # Aggiustamento demo sul primo paziente
        martina = s.execute(select(Patient).where(Patient.name == "Martina López")).scalar_one()
        t = martina.treatments[0]
        if not t.fee_adjustments:
            new_fee = Decimal("14000")
            t.fee_adjustments.append(
                FeeAdjustment(
                    previous_fee=t.current_fee,
                    new_fee=new_fee,
                    adjustment_percentage=adjustment_percentage(Decimal(t.current_fee), new_fee),
                    adjustment_date=date(2024, 4, 1),
                    notes="Aggiustamento trimestrale",
                )
            )
            t.current_fee = new_fee
