from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def new_uuid() -> str:
    return str(uuid.uuid4())


class PatientStatus(enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class SessionType(enum.Enum):
    SESSION = "session"
    PARENT_ORIENTATION = "parent_orientation"
    PARENT_INTERVIEW = "parent_interview"


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    contact: Mapped[str | None] = mapped_column(String(160), nullable=True)
    father_name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    mother_name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    status: Mapped[PatientStatus] = mapped_column(
        Enum(PatientStatus), default=PatientStatus.ACTIVE, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    treatments: Mapped[list["Treatment"]] = relationship(back_populates="patient", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"Patient({self.name}, {self.status.value})"


class Treatment(Base):
    __tablename__ = "treatments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    patient_id: Mapped[str] = mapped_column(ForeignKey("patients.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # initial_fee non si modifica dopo la creazione; current_fee segue l'ultimo aggiustamento
    initial_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    current_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    patient: Mapped["Patient"] = relationship(back_populates="treatments")
    sessions: Mapped[list["TreatmentSession"]] = relationship(
        back_populates="treatment", cascade="all, delete-orphan"
    )
    fee_adjustments: Mapped[list["FeeAdjustment"]] = relationship(
        back_populates="treatment", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"Treatment({self.start_date}, fee={self.current_fee})"


class TreatmentSession(Base):
    """Prestazione erogata (sessione, orientamento o colloquio con i genitori)."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    treatment_id: Mapped[str] = mapped_column(ForeignKey("treatments.id"), nullable=False)
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    session_type: Mapped[SessionType] = mapped_column(
        Enum(SessionType), default=SessionType.SESSION, nullable=False
    )
    # fotografia dell'onorario al momento della prestazione
    fee_charged: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    treatment: Mapped["Treatment"] = relationship(back_populates="sessions")


class FeeAdjustment(Base):
    __tablename__ = "fee_adjustments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    treatment_id: Mapped[str] = mapped_column(ForeignKey("treatments.id"), nullable=False)
    previous_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    new_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    adjustment_percentage: Mapped[Decimal] = mapped_column(Numeric(7, 2), nullable=False)
    # data di vigenza, non di inserimento
    adjustment_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    treatment: Mapped["Treatment"] = relationship(back_populates="fee_adjustments")


class InflationRecord(Base):
    __tablename__ = "inflation_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    month: Mapped[date] = mapped_column(Date, nullable=False, unique=True)  # primo giorno del mese
    percentage: Mapped[Decimal] = mapped_column(Numeric(7, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
