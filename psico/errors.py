from __future__ import annotations


class PsicoError(Exception):
    """Errore di dominio: il messaggio è pensato per essere mostrato all'utente."""


class ValidationError(PsicoError):
    """Input non valido (onorario non positivo, data non valida, base zero, ...)."""


class NotFoundError(PsicoError):
    """Entità referenziata assente dallo snapshot o dal DB."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} non trovato: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id
