"""Service lifecycle: intake, guarded status transitions and their history.

``TRANSITIONS`` is the single source of truth for which operation may move a
service from which status. Every successful transition writes the new status
with a conditional update and appends exactly one history entry, so the
history replayed from ``pending`` always reconstructs the current status.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Optional

from ..config import BusinessConfig
from ..domain import (
    Actor,
    RemovedPart,
    Role,
    Service,
    ServiceStatus,
    StatusHistoryEntry,
    WarrantyStatus,
    utcnow,
)
from ..errors import (
    AlreadyReturned,
    InvalidTransition,
    NotFound,
    RateLimited,
    ValidationError,
)
from ..notifications import EventType, NotificationDispatcher, dispatch_after_commit
from ..repositories.base import Repository
from .inputs import optional_text, text, text_list
from .role_gate import AccessContext, Operation, allowed, require

logger = logging.getLogger(__name__)

SERVICE_REQUEST = "service_request"


@dataclass(frozen=True)
class Transition:
    sources: frozenset[ServiceStatus]
    target: ServiceStatus


NON_TERMINAL = frozenset(s for s in ServiceStatus if not s.is_terminal)

TRANSITIONS: dict[Operation, Transition] = {
    Operation.ASSIGN_TECHNICIAN: Transition(frozenset({ServiceStatus.PENDING}), ServiceStatus.ASSIGNED),
    Operation.SCHEDULE: Transition(frozenset({ServiceStatus.ASSIGNED}), ServiceStatus.SCHEDULED),
    Operation.START_WORK: Transition(
        frozenset({ServiceStatus.SCHEDULED, ServiceStatus.ASSIGNED}), ServiceStatus.IN_PROGRESS
    ),
    Operation.REQUEST_PARTS: Transition(frozenset({ServiceStatus.IN_PROGRESS}), ServiceStatus.WAITING_PARTS),
    Operation.MARK_PARTS_REMOVED: Transition(
        frozenset({ServiceStatus.IN_PROGRESS}), ServiceStatus.DEVICE_PARTS_REMOVED
    ),
    Operation.COMPLETE: Transition(
        frozenset({ServiceStatus.IN_PROGRESS, ServiceStatus.WAITING_PARTS, ServiceStatus.DEVICE_PARTS_REMOVED}),
        ServiceStatus.COMPLETED,
    ),
    Operation.CANCEL: Transition(NON_TERMINAL, ServiceStatus.CANCELED),
}


def replay_history(entries: Iterable[StatusHistoryEntry]) -> ServiceStatus:
    """Rebuild a service's status from its history, starting at ``pending``."""
    status = ServiceStatus.PENDING
    for entry in entries:
        try:
            transition = TRANSITIONS[Operation(entry.operation)]
        except (KeyError, ValueError):
            raise InvalidTransition(entry.operation, status.value, f"Unknown operation in history: {entry.operation}")
        if entry.old_status != status or status not in transition.sources or entry.new_status != transition.target:
            raise InvalidTransition(
                entry.operation,
                status.value,
                f"History entry #{entry.id} ({entry.old_status} -> {entry.new_status}) does not follow {status}",
            )
        status = entry.new_status
    return status


def _service_payload(service: Service, **extra: Any) -> dict[str, Any]:
    payload = {
        "service_id": service.id,
        "status": service.status.value,
        "client_id": service.client_id,
        "appliance_id": service.appliance_id,
        "technician_id": service.technician_id,
        "business_partner_id": service.business_partner_id,
    }
    payload.update(extra)
    return payload


def _parse_cost(cost: Any) -> Optional[Decimal]:
    if cost is None or cost == "":
        return None
    try:
        value = Decimal(str(cost))
    except InvalidOperation:
        raise ValidationError(f"Invalid cost: {cost!r}")
    if not value.is_finite() or value < 0:
        raise ValidationError("Cost cannot be negative.")
    return value


def _parse_date(value: Any, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD).", details={"field": field})


class ServiceLifecycle:
    def __init__(
        self,
        *,
        dispatcher: NotificationDispatcher | None = None,
        business: BusinessConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.dispatcher = dispatcher
        self.business = business or BusinessConfig()
        self.clock = clock

    # intake and reads

    def create_service(
        self,
        repo: Repository,
        actor: Actor,
        *,
        client_id: int,
        appliance_id: int,
        description: str,
        warranty_status: str | WarrantyStatus = WarrantyStatus.OUT_OF_WARRANTY,
    ) -> Service:
        require(actor, Operation.CREATE_SERVICE)

        for field, value in (("client_id", client_id), ("appliance_id", appliance_id)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{field} must be an integer.", details={"field": field})

        description = text(description, "description", "Service description")
        try:
            warranty = WarrantyStatus(warranty_status)
        except ValueError:
            raise ValidationError(f"Unknown warranty status: {warranty_status}", details={"field": "warranty_status"})

        if repo.get_client(client_id) is None:
            raise NotFound("Client", client_id)
        appliance = repo.get_appliance(appliance_id)
        if appliance is None:
            raise NotFound("Appliance", appliance_id)
        if appliance.client_id != client_id:
            raise ValidationError(
                f"Appliance {appliance_id} does not belong to client {client_id}.",
                details={"field": "appliance_id"},
            )

        partner_id = actor.user_id if actor.role == Role.BUSINESS_PARTNER else None

        def insert() -> Service:
            return repo.insert_service(
                client_id=client_id,
                appliance_id=appliance_id,
                description=description,
                warranty_status=warranty,
                business_partner_id=partner_id,
                created_by=actor.user_id,
            )

        if actor.role == Role.CUSTOMER:
            service = self._create_rate_limited(repo, actor, insert)
        else:
            service = insert()

        logger.info("Service #%s created by %s#%s", service.id, actor.role, actor.user_id)
        return service

    def _create_rate_limited(self, repo: Repository, actor: Actor, insert: Callable[[], Service]) -> Service:
        window = timedelta(hours=self.business.customer_request_window_hours)
        with repo.request_window_lock(actor.user_id):
            now = self.clock()
            since = now - window
            count = repo.count_requests_since(actor.user_id, SERVICE_REQUEST, since)
            if count >= self.business.customer_max_requests:
                oldest = repo.oldest_request_since(actor.user_id, SERVICE_REQUEST, since) or now
                retry_after = max(int((oldest + window - now).total_seconds()), 1)
                logger.info("Customer #%s rate limited, retry in %ss", actor.user_id, retry_after)
                raise RateLimited(
                    f"Only {self.business.customer_max_requests} service request(s) allowed per "
                    f"{self.business.customer_request_window_hours}h.",
                    retry_after=retry_after,
                )
            service = insert()
            repo.add_request_tracking(user_id=actor.user_id, request_type=SERVICE_REQUEST, requested_at=now)
        return service

    def get_service(self, repo: Repository, actor: Actor, service_id: int) -> Service:
        service = repo.get_service(service_id)
        if service is None:
            raise NotFound("Service", service_id)
        require(actor, Operation.READ_SERVICE, AccessContext.for_service(service))
        return service

    def list_services(
        self, repo: Repository, actor: Actor, *, status: str | ServiceStatus | None = None
    ) -> list[Service]:
        wanted = None
        if status is not None:
            try:
                wanted = ServiceStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown service status: {status}", details={"field": "status"})

        # narrow the query, then let the gate decide row by row
        if actor is not None and actor.role == Role.TECHNICIAN:
            rows = repo.list_services(technician_id=actor.technician_id, status=wanted)
        elif actor is not None and actor.role == Role.BUSINESS_PARTNER:
            rows = repo.list_services(business_partner_id=actor.user_id, status=wanted)
        else:
            rows = repo.list_services(status=wanted)
        return [s for s in rows if allowed(actor, Operation.READ_SERVICE, AccessContext.for_service(s))]

    def history(self, repo: Repository, actor: Actor, service_id: int) -> list[StatusHistoryEntry]:
        self.get_service(repo, actor, service_id)
        return repo.list_status_history(service_id)

    # transitions

    def assign_technician(
        self, repo: Repository, actor: Actor, service_id: int, *, technician_id: int, notes: str | None = None
    ) -> Service:
        service = self._load_for(repo, actor, service_id, Operation.ASSIGN_TECHNICIAN)
        technician = repo.get_technician(technician_id)
        if technician is None or not technician.is_active:
            raise NotFound("Technician", technician_id)

        updated = self._apply(repo, actor, service, Operation.ASSIGN_TECHNICIAN, notes, technician_id=technician_id)
        dispatch_after_commit(
            repo,
            self.dispatcher,
            EventType.SERVICE_ASSIGNED,
            _service_payload(updated, technician_name=technician.full_name),
        )
        return updated

    def schedule(
        self, repo: Repository, actor: Actor, service_id: int, *, scheduled_date: Any, notes: str | None = None
    ) -> Service:
        service = self._load_for(repo, actor, service_id, Operation.SCHEDULE)
        when = _parse_date(scheduled_date, "scheduled_date")
        return self._apply(repo, actor, service, Operation.SCHEDULE, notes, scheduled_date=when)

    def start_work(self, repo: Repository, actor: Actor, service_id: int, *, notes: str | None = None) -> Service:
        service = self._load_for(repo, actor, service_id, Operation.START_WORK)
        return self._apply(repo, actor, service, Operation.START_WORK, notes)

    def request_parts(self, repo: Repository, actor: Actor, service_id: int, *, notes: str | None = None) -> Service:
        service = self._load_for(repo, actor, service_id, Operation.REQUEST_PARTS)
        return self._apply(repo, actor, service, Operation.REQUEST_PARTS, notes)

    def mark_parts_removed(
        self, repo: Repository, actor: Actor, service_id: int, *, notes: str | None = None
    ) -> Service:
        service = self._load_for(repo, actor, service_id, Operation.MARK_PARTS_REMOVED)
        if not repo.list_removed_parts(service_id):
            raise InvalidTransition(
                Operation.MARK_PARTS_REMOVED.value,
                service.status.value,
                f"Service {service_id} has no recorded removed parts",
            )
        return self._apply(repo, actor, service, Operation.MARK_PARTS_REMOVED, notes)

    def complete(
        self,
        repo: Repository,
        actor: Actor,
        service_id: int,
        *,
        notes: str | None = None,
        cost: Any = None,
        is_completely_fixed: bool | None = None,
        used_parts: Iterable[str] | None = None,
    ) -> Service:
        service = self._load_for(repo, actor, service_id, Operation.COMPLETE)
        if is_completely_fixed is not None and not isinstance(is_completely_fixed, bool):
            raise ValidationError("is_completely_fixed must be true, false or null.")
        parts = text_list(used_parts, "used_parts")
        notes = optional_text(notes, "notes")

        updated = self._apply(
            repo,
            actor,
            service,
            Operation.COMPLETE,
            notes,
            technician_notes=notes if notes else service.technician_notes,
            cost=_parse_cost(cost),
            is_completely_fixed=is_completely_fixed,
            used_parts=parts or service.used_parts,
            completed_date=self.clock(),
        )
        dispatch_after_commit(
            repo,
            self.dispatcher,
            EventType.SERVICE_COMPLETED,
            _service_payload(
                updated,
                cost=str(updated.cost) if updated.cost is not None else None,
                is_completely_fixed=updated.is_completely_fixed,
                warranty_status=updated.warranty_status.value,
            ),
        )
        return updated

    def cancel(self, repo: Repository, actor: Actor, service_id: int, *, reason: str | None = None) -> Service:
        service = self._load_for(repo, actor, service_id, Operation.CANCEL)
        reason = optional_text(reason, "reason")
        updated = self._apply(repo, actor, service, Operation.CANCEL, reason)
        dispatch_after_commit(
            repo, self.dispatcher, EventType.SERVICE_CANCELED, _service_payload(updated, reason=reason)
        )
        return updated

    def transition_service(
        self,
        repo: Repository,
        actor: Actor,
        service_id: int,
        operation: str | Operation,
        params: dict[str, Any] | None = None,
    ) -> Service:
        try:
            op = Operation(operation)
        except ValueError:
            op = None
        if op not in TRANSITIONS:
            raise ValidationError(f"Unknown service operation: {operation}", details={"field": "operation"})

        params = dict(params or {})
        handlers: dict[Operation, Callable[..., Service]] = {
            Operation.ASSIGN_TECHNICIAN: self.assign_technician,
            Operation.SCHEDULE: self.schedule,
            Operation.START_WORK: self.start_work,
            Operation.REQUEST_PARTS: self.request_parts,
            Operation.MARK_PARTS_REMOVED: self.mark_parts_removed,
            Operation.COMPLETE: self.complete,
            Operation.CANCEL: self.cancel,
        }
        handler = handlers[op]
        try:
            inspect.signature(handler).bind(repo, actor, service_id, **params)
        except TypeError as e:
            raise ValidationError(f"Invalid parameters for {op.value}: {e}") from e
        return handler(repo, actor, service_id, **params)

    def _load_for(self, repo: Repository, actor: Actor, service_id: int, operation: Operation) -> Service:
        service = repo.get_service(service_id)
        if service is None:
            raise NotFound("Service", service_id)
        require(actor, operation, AccessContext.for_service(service))
        if service.status not in TRANSITIONS[operation].sources:
            raise InvalidTransition(operation.value, service.status.value)
        return service

    def _apply(
        self,
        repo: Repository,
        actor: Actor,
        service: Service,
        operation: Operation,
        notes: str | None,
        **changes: Any,
    ) -> Service:
        notes = optional_text(notes, "notes")
        target = TRANSITIONS[operation].target
        updated = replace(service, status=target, **changes)
        if not repo.save_service(updated, expected_status=service.status):
            current = repo.get_service(service.id)
            raise InvalidTransition(operation.value, current.status.value if current else service.status.value)

        repo.append_status_history(
            service_id=service.id,
            old_status=service.status,
            new_status=target,
            operation=operation.value,
            actor_id=actor.user_id,
            actor_role=actor.role,
            notes=notes,
        )
        logger.info(
            "Service #%s %s: %s -> %s by %s#%s",
            service.id,
            operation.value,
            service.status.value,
            target.value,
            actor.role,
            actor.user_id,
        )
        return updated

    # work on the device that does not move the status

    def record_removed_part(
        self,
        repo: Repository,
        actor: Actor,
        service_id: int,
        *,
        part_name: str,
        removal_reason: str,
        notes: str | None = None,
    ) -> RemovedPart:
        service = repo.get_service(service_id)
        if service is None:
            raise NotFound("Service", service_id)
        require(actor, Operation.RECORD_REMOVED_PART, AccessContext.for_service(service))
        if service.status.is_terminal:
            raise InvalidTransition(Operation.RECORD_REMOVED_PART.value, service.status.value)
        part_name = text(part_name, "part_name")
        removal_reason = text(removal_reason, "removal_reason")
        notes = optional_text(notes, "notes")

        removed = repo.insert_removed_part(
            service_id=service_id,
            technician_id=service.technician_id,
            part_name=part_name,
            removal_reason=removal_reason,
            notes=notes,
        )
        logger.info("Removed part #%s (%s) recorded on service #%s", removed.id, removed.part_name, service_id)
        dispatch_after_commit(
            repo,
            self.dispatcher,
            EventType.PARTS_REMOVED,
            _service_payload(service, part_name=removed.part_name, removal_reason=removed.removal_reason),
        )
        return removed

    def mark_removed_part_returned(
        self,
        repo: Repository,
        actor: Actor,
        removed_part_id: int,
        *,
        return_date: Any,
        notes: str | None = None,
    ) -> RemovedPart:
        removed = repo.get_removed_part(removed_part_id)
        if removed is None:
            raise NotFound("RemovedPart", removed_part_id)
        service = repo.get_service(removed.service_id)
        if service is None:
            raise NotFound("Service", removed.service_id)
        require(actor, Operation.RETURN_REMOVED_PART, AccessContext.for_service(service))
        when = _parse_date(return_date, "return_date")
        notes = optional_text(notes, "notes")

        updated = repo.mark_removed_part_returned(removed_part_id, return_date=when, notes=notes)
        if updated is None:
            raise AlreadyReturned(
                f"Removed part {removed_part_id} was already returned",
                details={"removed_part_id": removed_part_id},
            )
        logger.info("Removed part #%s returned on %s", removed_part_id, when.isoformat())
        return updated

    def notify_client_not_available(
        self, repo: Repository, actor: Actor, service_id: int, *, notes: str | None = None
    ) -> Service:
        service = repo.get_service(service_id)
        if service is None:
            raise NotFound("Service", service_id)
        require(actor, Operation.NOTIFY_CLIENT_NOT_AVAILABLE, AccessContext.for_service(service))
        notes = optional_text(notes, "notes")
        if service.status.is_terminal:
            raise InvalidTransition(Operation.NOTIFY_CLIENT_NOT_AVAILABLE.value, service.status.value)

        client = repo.get_client(service.client_id)
        dispatch_after_commit(
            repo,
            self.dispatcher,
            EventType.CLIENT_NOT_AVAILABLE,
            _service_payload(
                service,
                client_name=client.full_name if client else None,
                client_phone=client.phone if client else None,
                notes=notes,
            ),
        )
        return service
