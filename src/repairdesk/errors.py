from __future__ import annotations

from typing import Any, Optional


class ServiceDeskError(Exception):
    """Base class for failures of a single core operation."""

    code = "SERVICE_DESK_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFound(ServiceDeskError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity} not found: {entity_id}",
            details={"entity": entity, "id": entity_id},
        )


class Forbidden(ServiceDeskError):
    code = "FORBIDDEN"


class InvalidTransition(ServiceDeskError):
    code = "INVALID_TRANSITION"

    def __init__(self, operation: str, current_status: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Cannot {operation} a service in status '{current_status}'",
            details={"operation": operation, "status": current_status},
        )


class InsufficientStock(ServiceDeskError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, part_id: int, requested: int, available: int) -> None:
        super().__init__(
            f"Not enough stock for part_id={part_id}: requested {requested}, available {available}",
            details={"part_id": part_id, "requested": requested, "available": available},
        )


class AlreadyReturned(ServiceDeskError):
    code = "ALREADY_RETURNED"


class ValidationError(ServiceDeskError):
    code = "VALIDATION_ERROR"


class Conflict(ServiceDeskError):
    code = "CONFLICT"


class RateLimited(Conflict):
    code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after


class PartInUse(Conflict):
    code = "PART_IN_USE"

    def __init__(self, part_id: int, outstanding: int) -> None:
        super().__init__(
            f"Part {part_id} still has {outstanding} outstanding allocation(s)",
            details={"part_id": part_id, "outstanding": outstanding},
        )
