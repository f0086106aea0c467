from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select

from .auth_models import Practitioner
from .auth_security import check_password, hash_password, verify_password
from .db import db_session
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _clean(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


def profile_dict(p: Practitioner) -> dict:
    return {
        "id": p.id,
        "username": p.username,
        "full_name": p.full_name,
        "license_number": p.license_number,
        "phone": p.phone,
        "is_active": p.is_active,
    }


# =========================
# Registrazione / accesso
# =========================
def register_practitioner(
    username: str,
    password: str,
    full_name: str,
    license_number: str | None = None,
    phone: str | None = None,
) -> str:
    username = (username or "").strip().lower()
    if not username:
        raise ValidationError("Lo username è obbligatorio.")
    check_password(password)
    name = _clean(full_name)
    if name is None:
        raise ValidationError("Il nome completo è obbligatorio.")

    with db_session() as s:
        exists = s.execute(select(Practitioner).where(Practitioner.username == username)).scalar_one_or_none()
        if exists:
            raise ValidationError("Username già registrato.")

        p = Practitioner(
            username=username,
            password_hash=hash_password(password),
            full_name=name,
            license_number=_clean(license_number),
            phone=_clean(phone),
            is_active=True,
        )
        s.add(p)
        s.flush()
        logger.info("Registrato professionista %s", username)
        return p.id


def authenticate(username: str, password: str) -> Practitioner | None:
    username = (username or "").strip().lower()
    with db_session() as s:
        p = s.execute(select(Practitioner).where(Practitioner.username == username)).scalar_one_or_none()
        if not p or not p.is_active or not verify_password(password, p.password_hash):
            logger.warning("Accesso rifiutato per %r", username)
            return None
        return p


def get_practitioner(practitioner_id: str) -> Practitioner | None:
    with db_session() as s:
        return s.get(Practitioner, practitioner_id)


# =========================
# Profilo
# =========================
def update_profile(practitioner_id: str, **changes: Any) -> dict:
    """Modifica nome, matricola e telefono (campi vuoti -> None, il nome resta obbligatorio)."""
    allowed = {"full_name", "license_number", "phone"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Campi non modificabili: {', '.join(sorted(unknown))}")

    with db_session() as s:
        p = s.get(Practitioner, practitioner_id)
        if p is None:
            raise NotFoundError("Professionista", practitioner_id)
        if "full_name" in changes:
            name = _clean(changes["full_name"])
            if name is None:
                raise ValidationError("Il nome completo è obbligatorio.")
            p.full_name = name
        for key in ("license_number", "phone"):
            if key in changes:
                setattr(p, key, _clean(changes[key]))
        s.flush()
        return profile_dict(p)


def change_password(practitioner_id: str, current_password: str, new_password: str) -> None:
    check_password(new_password)
    with db_session() as s:
        p = s.get(Practitioner, practitioner_id)
        if p is None:
            raise NotFoundError("Professionista", practitioner_id)
        if not verify_password(current_password, p.password_hash):
            raise ValidationError("Password attuale errata.")
        p.password_hash = hash_password(new_password)
        logger.info("Password aggiornata per %s", p.username)
