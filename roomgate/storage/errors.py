from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """A write the store refused; ``message`` is safe to show to a caller."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class DuplicateValue(ConstraintViolation):
    """A live row already holds this login, email or external identity."""

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"{field} already in use", {"field": field})
        self.field = field


class MissingReference(ConstraintViolation):
    """The write points at a row that does not exist."""

    def __init__(self, entity: str, entity_id: Any, message: Optional[str] = None):
        super().__init__(
            message or f"{entity} does not exist", {f"{entity}_id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


__all__ = ["ConstraintViolation", "DuplicateValue", "MissingReference"]
