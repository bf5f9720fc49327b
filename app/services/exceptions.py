from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class EstimationError(Exception):
    """Base exception for estimation and composition errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(EstimationError):
    """Malformed write request. Nothing was persisted."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.errors = errors or [message]


class InvalidStatusTransitionError(ValidationError):
    def __init__(self, current: str, new: str) -> None:
        super().__init__(
            f"Invalid transition from {current} to {new}",
            details={"current": current, "requested": new},
        )


class NotFoundError(EstimationError):
    def __init__(self, entity: str, identifier: Any) -> None:
        super().__init__(f"{entity} {identifier} not found", {"entity": entity, "id": identifier})
        self.entity = entity
        self.identifier = identifier


class ConflictError(EstimationError):
    pass


class PermissionDeniedError(EstimationError):
    pass


class ConsistencyWarning(BaseModel):
    """Non-fatal problem reported next to a successful result."""

    code: str
    message: str
    deliverable_id: Optional[int] = None
    deliverable_name: Optional[str] = None
