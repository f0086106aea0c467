from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from . import config
from .errors import ValidationError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def check_password(password: str | None) -> str:
    """Lunghezza minima da config (PASSWORD_MIN_LENGTH)."""
    if not password or len(password) < config.PASSWORD_MIN_LENGTH:
        raise ValidationError(f"La password deve avere almeno {config.PASSWORD_MIN_LENGTH} caratteri.")
    return password


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(
    practitioner_id: str,
    claims: dict[str, Any] | None = None,
    expires_minutes: int | None = None,
) -> str:
    """
    Token di accesso per il professionista.
    `sub` è l'id del Practitioner; `claims` aggiunge dati di profilo (username, nome).
    """
    now = datetime.now(timezone.utc)
    minutes = expires_minutes if expires_minutes is not None else config.ACCESS_TOKEN_EXPIRE_MINUTES

    payload: dict[str, Any] = dict(claims or {})
    payload.update(
        sub=practitioner_id,
        iat=int(now.timestamp()),
        exp=int((now + timedelta(minutes=minutes)).timestamp()),
    )
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])


def practitioner_id_from_token(token: str) -> str | None:
    """None se il token è malformato, scaduto, firmato con un'altra chiave o senza `sub`."""
    try:
        sub = decode_token(token).get("sub")
    except JWTError:
        return None
    return sub if isinstance(sub, str) and sub else None
