"""
Configurazione applicativa via python-dotenv.

Carica un eventuale file .env e espone le impostazioni come costanti di modulo.
"""
from __future__ import annotations

import logging
import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# DB SQLite su file nella root del progetto
DB_PATH = Path(__file__).resolve().parents[1] / "psico.sqlite"
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DB_PATH}")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("1", "true", "yes")

# In produzione: mettila in variabile d'ambiente
JWT_SECRET = os.getenv("JWT_SECRET", "CHANGE_ME_DEV_SECRET")
JWT_ALG = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))
PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", "6"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Semaforo onorari: inflazione accumulata (%) oltre cui rivedere / adeguare
FEE_STATUS_REVIEW_THRESHOLD = Decimal(os.getenv("FEE_STATUS_REVIEW_THRESHOLD", "5"))
FEE_STATUS_ADJUST_THRESHOLD = Decimal(os.getenv("FEE_STATUS_ADJUST_THRESHOLD", "15"))


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
