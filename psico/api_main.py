from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, Field

from . import services
from .auth_models import Practitioner
from .auth_security import create_access_token, practitioner_id_from_token
from .auth_service import (
    authenticate,
    change_password,
    get_practitioner,
    profile_dict,
    register_practitioner,
    update_profile,
)
from .config import configure_logging
from .errors import NotFoundError, ValidationError
from .models import PatientStatus, SessionType

configure_logging()
logger = logging.getLogger(__name__)

# OAuth2 Bearer (Authorization: Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

app = FastAPI(title="Psico API", version="1.0.0")



# Startup

@app.on_event("startup")
def startup() -> None:
    # Crea tabelle (inclusi i professionisti)
    services.init_db()
    logger.info("Psico API avviata")



# Errori di dominio -> HTTP

@app.exception_handler(ValidationError)
def on_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
def on_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})



# Schemi Auth

class RegisterIn(BaseModel):
    username: str
    password: str
    full_name: str
    license_number: str | None = None
    phone: str | None = None


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ProfileOut(BaseModel):
    id: str
    username: str
    full_name: str
    license_number: str | None = None
    phone: str | None = None
    is_active: bool


class ProfileUpdateIn(BaseModel):
    full_name: str | None = None
    license_number: str | None = None
    phone: str | None = None


class PasswordChangeIn(BaseModel):
    current_password: str
    new_password: str



# Schemi Domain

class PatientIn(BaseModel):
    name: str = Field(..., min_length=1)
    contact: str | None = None
    father_name: str | None = None
    mother_name: str | None = None
    status: PatientStatus = PatientStatus.ACTIVE


class PatientUpdateIn(BaseModel):
    name: str | None = None
    contact: str | None = None
    father_name: str | None = None
    mother_name: str | None = None
    status: PatientStatus | None = None


class TreatmentIn(BaseModel):
    patient_id: str
    start_date: date
    initial_fee: Decimal
    current_fee: Decimal | None = None
    end_date: date | None = None
    is_active: bool = True


class TreatmentUpdateIn(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    is_active: bool | None = None
    initial_fee: Decimal | None = None


class SessionIn(BaseModel):
    treatment_id: str
    session_date: date
    session_type: SessionType = SessionType.SESSION
    # se assente: current_fee del trattamento
    fee_charged: Decimal | None = None
    is_paid: bool = False


class SessionUpdateIn(BaseModel):
    session_date: date | None = None
    session_type: SessionType | None = None
    fee_charged: Decimal | None = None
    is_paid: bool | None = None


class InflationIn(BaseModel):
    month: str = Field(..., description="YYYY-MM oppure YYYY-MM-DD")
    percentage: Decimal


class InflationUpdateIn(BaseModel):
    month: str | None = None
    percentage: Decimal | None = None


class AdjustmentIn(BaseModel):
    new_fee: Decimal
    effective_date: date
    notes: str | None = None


class AdjustmentEditIn(BaseModel):
    new_fee: Decimal
    effective_date: date



# Dipendenze auth

def get_current_practitioner(token: str = Depends(oauth2_scheme)) -> Practitioner:
    # elimina spazi / virgolette accidentali
    token = token.strip().strip('"').strip("'")

    practitioner_id = practitioner_id_from_token(token)
    if not practitioner_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token non valido")

    p = get_practitioner(practitioner_id)
    if not p or not p.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Utente non valido")
    return p



# AUTH endpoints

@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn) -> dict[str, Any]:
    practitioner_id = register_practitioner(
        payload.username, payload.password, payload.full_name, payload.license_number, payload.phone
    )
    return {"ok": True, "practitioner_id": practitioner_id}


@app.post("/api/auth/login", response_model=TokenOut)
def login(form: OAuth2PasswordRequestForm = Depends()) -> TokenOut:
    p = authenticate(form.username, form.password)
    if not p:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Credenziali non valide")

    token = create_access_token(p.id, claims={"username": p.username, "name": p.full_name})
    return TokenOut(access_token=token)



# Profilo

@app.get("/api/me", response_model=ProfileOut)
def me(practitioner: Practitioner = Depends(get_current_practitioner)) -> ProfileOut:
    return ProfileOut(**profile_dict(practitioner))


@app.patch("/api/me", response_model=ProfileOut)
def api_update_profile(
    payload: ProfileUpdateIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> ProfileOut:
    return ProfileOut(**update_profile(practitioner.id, **payload.model_dump(exclude_unset=True)))


@app.post("/api/me/password")
def api_change_password(
    payload: PasswordChangeIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict[str, Any]:
    change_password(practitioner.id, payload.current_password, payload.new_password)
    return {"ok": True}



# Pazienti

@app.get("/api/patients")
def api_patients(practitioner: Practitioner = Depends(get_current_practitioner)) -> list[dict]:
    return services.list_patients_flat()


@app.post("/api/patients", status_code=status.HTTP_201_CREATED)
def api_create_patient(
    payload: PatientIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict[str, Any]:
    pid = services.create_patient(
        payload.name, payload.contact, payload.father_name, payload.mother_name, payload.status
    )
    return {"ok": True, "patient_id": pid}


@app.patch("/api/patients/{patient_id}")
def api_update_patient(
    patient_id: str, payload: PatientUpdateIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict:
    return services.update_patient(patient_id, **payload.model_dump(exclude_unset=True))


@app.delete("/api/patients/{patient_id}")
def api_delete_patient(
    patient_id: str, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict[str, Any]:
    services.delete_patient(patient_id)
    return {"ok": True}



# Trattamenti

@app.get("/api/treatments")
def api_treatments(
    patient_id: str | None = None, practitioner: Practitioner = Depends(get_current_practitioner)
) -> list[dict]:
    return services.list_treatments_flat(patient_id)


@app.post("/api/treatments", status_code=status.HTTP_201_CREATED)
def api_create_treatment(
    payload: TreatmentIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict[str, Any]:
    tid = services.create_treatment(
        patient_id=payload.patient_id,
        start_date=payload.start_date,
        initial_fee=payload.initial_fee,
        current_fee=payload.current_fee,
        end_date=payload.end_date,
        is_active=payload.is_active,
    )
    return {"ok": True, "treatment_id": tid}


@app.patch("/api/treatments/{treatment_id}")
def api_update_treatment(
    treatment_id: str, payload: TreatmentUpdateIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict:
    return services.update_treatment(treatment_id, **payload.model_dump(exclude_unset=True))


@app.delete("/api/treatments/{treatment_id}")
def api_delete_treatment(
    treatment_id: str, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict[str, Any]:
    services.delete_treatment(treatment_id)
    return {"ok": True}


@app.get("/api/treatments/{treatment_id}/adjustments")
def api_adjustments(
    treatment_id: str, practitioner: Practitioner = Depends(get_current_practitioner)
) -> list[dict]:
    return services.list_fee_adjustments_flat(treatment_id)


@app.post("/api/treatments/{treatment_id}/adjustments", status_code=status.HTTP_201_CREATED)
def api_apply_adjustment(
    treatment_id: str, payload: AdjustmentIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict:
    return services.apply_fee_adjustment(treatment_id, payload.new_fee, payload.effective_date, notes=payload.notes)


@app.get("/api/treatments/{treatment_id}/suggestion")
def api_suggestion(treatment_id: str, practitioner: Practitioner = Depends(get_current_practitioner)) -> dict:
    return services.suggest_fee(treatment_id)



# Aggiustamenti

@app.put("/api/adjustments/{adjustment_id}")
def api_edit_adjustment(
    adjustment_id: str, payload: AdjustmentEditIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict:
    return services.edit_fee_adjustment(adjustment_id, payload.new_fee, payload.effective_date)


@app.delete("/api/adjustments/{adjustment_id}")
def api_delete_adjustment(
    adjustment_id: str, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict:
    return services.delete_fee_adjustment(adjustment_id)



# Prestazioni

@app.get("/api/sessions")
def api_sessions(
    treatment_id: str | None = None, practitioner: Practitioner = Depends(get_current_practitioner)
) -> list[dict]:
    return services.list_sessions_flat(treatment_id)


@app.post("/api/sessions", status_code=status.HTTP_201_CREATED)
def api_record_session(
    payload: SessionIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict[str, Any]:
    sid = services.record_session(
        payload.treatment_id, payload.session_date, payload.session_type, payload.fee_charged, payload.is_paid
    )
    return {"ok": True, "session_id": sid}


@app.patch("/api/sessions/{session_id}")
def api_update_session(
    session_id: str, payload: SessionUpdateIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict:
    return services.update_session(session_id, **payload.model_dump(exclude_unset=True))


@app.post("/api/sessions/{session_id}/toggle-paid")
def api_toggle_paid(
    session_id: str, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict[str, Any]:
    return {"ok": True, "is_paid": services.toggle_session_paid(session_id)}


@app.delete("/api/sessions/{session_id}")
def api_delete_session(
    session_id: str, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict[str, Any]:
    services.delete_session(session_id)
    return {"ok": True}



# Inflazione

@app.get("/api/inflation")
def api_inflation(practitioner: Practitioner = Depends(get_current_practitioner)) -> list[dict]:
    return services.list_inflation_flat()


@app.get("/api/inflation/series")
def api_inflation_series(practitioner: Practitioner = Depends(get_current_practitioner)) -> list[dict]:
    return services.inflation_series()


@app.post("/api/inflation", status_code=status.HTTP_201_CREATED)
def api_record_inflation(
    payload: InflationIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict[str, Any]:
    rid = services.record_inflation(payload.month, payload.percentage)
    return {"ok": True, "inflation_id": rid}


@app.patch("/api/inflation/{record_id}")
def api_update_inflation(
    record_id: str, payload: InflationUpdateIn, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict:
    return services.update_inflation(record_id, payload.month, payload.percentage)


@app.delete("/api/inflation/{record_id}")
def api_delete_inflation(
    record_id: str, practitioner: Practitioner = Depends(get_current_practitioner)
) -> dict[str, Any]:
    services.delete_inflation(record_id)
    return {"ok": True}



# Viste

@app.get("/api/fees")
def api_fees(
    q: str | None = Query(None), practitioner: Practitioner = Depends(get_current_practitioner)
) -> list[dict]:
    return services.fee_overview_flat(q)


@app.get("/api/pending")
def api_pending(practitioner: Practitioner = Depends(get_current_practitioner)) -> list[dict]:
    return services.pending_payments_flat()


@app.get("/api/metrics")
def api_metrics(
    year: int | None = None,
    month: int | None = Query(None, ge=1, le=12),
    patient_id: str | None = None,
    practitioner: Practitioner = Depends(get_current_practitioner),
) -> dict:
    return services.billing_summary_flat(year, month, patient_id)
