"""
Asset lifecycle engine

State machine over ``Item.status``:

    available   -> assigned, maintenance, retired
    assigned    -> available, maintenance, retired
    maintenance -> available, retired
    retired     -> (terminal)

Each operation checks the caller's role, loads the item inside the caller's
tenant, checks the transition, builds the linked Assignment or
MaintenanceRecord changes plus one ActionLog entry, and hands everything to
``ItemStore.apply_transition`` which commits it atomically or not at all.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional
import uuid

from fastapi import Depends
import structlog

from asset_tracker.core.dependencies import get_item_store
from asset_tracker.core.exceptions import LifecycleConflict
from asset_tracker.core.permissions import ADMIN_ROLES, OPERATOR_ROLES, check_role
from asset_tracker.models.action_log import ActionLog, ActionType
from asset_tracker.models.assignment import Assignment, AssignmentStatus
from asset_tracker.models.item import Item, ItemStatus
from asset_tracker.models.maintenance_record import MaintenanceRecord, MaintenanceStatus
from asset_tracker.models.types import utc_now
from asset_tracker.models.user import UserRole
from asset_tracker.schemas.requests import (
    AssignmentRequest,
    CancelMaintenanceRequest,
    CheckInOutRequest,
    CompleteMaintenanceRequest,
    MaintenanceRequest,
    NFCLookupRequest,
    RetireRequest,
)
from asset_tracker.schemas.token import AuthContext
from asset_tracker.services.item_store import ItemStore

logger = structlog.get_logger(__name__)

RECENT_LOG_LIMIT = 10

# Minimum roles per operation, shared with the API routers
OPERATION_ROLES: Dict[str, FrozenSet[UserRole]] = {
    "lookup": OPERATOR_ROLES,
    "assign": ADMIN_ROLES,
    "checkout": OPERATOR_ROLES,
    "checkin": OPERATOR_ROLES,
    "schedule_maintenance": OPERATOR_ROLES,
    "start_maintenance": OPERATOR_ROLES,
    "complete_maintenance": OPERATOR_ROLES,
    "cancel_maintenance": ADMIN_ROLES,
    "retire": ADMIN_ROLES,
}


@dataclass
class ItemLookup:
    """Everything an NFC scan shows about an item"""
    item: Item
    assignment: Optional[Assignment] = None
    maintenance: Optional[MaintenanceRecord] = None
    recent_actions: List[ActionLog] = field(default_factory=list)


def _conflict(item: Item, reason: str) -> LifecycleConflict:
    logger.info(
        "Lifecycle conflict",
        tenant_id=str(item.tenant_id),
        item_id=str(item.id),
        current_status=item.status.value,
        reason=reason,
    )
    return LifecycleConflict(reason, item_id=str(item.id), current_status=item.status.value)


class LifecycleEngine:
    """Legal item transitions and the records they create"""

    def __init__(self, store: ItemStore):
        self.store = store

    # Reads

    def lookup(self, context: AuthContext, request: NFCLookupRequest) -> ItemLookup:
        check_role(context, OPERATION_ROLES["lookup"])
        item = self.store.get_item_by_nfc_tag(context.tenant_id, request.tag_uid)
        recent, _ = self.store.list_action_logs(context.tenant_id, item_id=item.id, limit=RECENT_LOG_LIMIT)
        return ItemLookup(
            item=item,
            assignment=self.store.get_open_assignment(context.tenant_id, item.id),
            maintenance=self.store.get_open_maintenance(context.tenant_id, item.id),
            recent_actions=recent,
        )

    # Transitions

    def assign_item(self, context: AuthContext, item_id: uuid.UUID, request: AssignmentRequest) -> Assignment:
        """available -> assigned, on behalf of ``request.assigned_by``"""
        check_role(context, OPERATION_ROLES["assign"])
        return self._hand_out(
            context,
            item_id,
            holder_id=request.operator_id,
            assigned_by=request.assigned_by,
            action=ActionType.ASSIGN,
            notes=request.notes,
            expected_return_date=request.due_date,
        )

    def check_out_item(self, context: AuthContext, item_id: uuid.UUID, request: CheckInOutRequest) -> Assignment:
        """available -> assigned, handed out by the caller"""
        check_role(context, OPERATION_ROLES["checkout"])
        return self._hand_out(
            context,
            item_id,
            holder_id=request.operator_id,
            assigned_by=context.user_id,
            action=ActionType.CHECKOUT,
            notes=request.notes,
            location=request.location,
            condition=request.condition,
        )

    def _hand_out(
        self,
        context: AuthContext,
        item_id: uuid.UUID,
        holder_id: uuid.UUID,
        assigned_by: uuid.UUID,
        action: ActionType,
        notes: Optional[str] = None,
        expected_return_date: Optional[datetime] = None,
        location: Optional[str] = None,
        condition=None,
    ) -> Assignment:
        item = self.store.get_item(context.tenant_id, item_id)

        allowed, reason = item.can_transition_to(ItemStatus.ASSIGNED)
        if not allowed:
            raise _conflict(item, reason)

        if self.store.get_open_assignment(context.tenant_id, item.id) is not None:
            raise _conflict(item, "Item already has an open assignment")

        holder = self.store.get_active_user(context.tenant_id, holder_id, label="Operator")
        assigner = self.store.get_active_user(context.tenant_id, assigned_by, label="Assigning user")

        assignment = Assignment(
            tenant_id=context.tenant_id,
            item_id=item.id,
            assigned_to=holder.id,
            assigned_by=assigner.id,
            status=AssignmentStatus.ACTIVE,
            expected_return_date=expected_return_date,
            notes=notes,
        )
        item_changes = {}
        if location:
            item_changes["location"] = location
        if condition:
            item_changes["condition"] = condition

        previous = item.status
        log = self._log(
            context, item, action, ItemStatus.ASSIGNED,
            operator_id=holder.id,
            location=location,
            notes=notes,
            details={"assignment_id": str(assignment.id)},
        )
        self.store.apply_transition(
            item,
            ItemStatus.ASSIGNED,
            log=log,
            records=[assignment],
            assigned_to=holder.id,
            item_changes=item_changes,
        )
        self._trace(context, item, previous, action)
        return assignment

    def check_in_item(self, context: AuthContext, item_id: uuid.UUID, request: CheckInOutRequest) -> Assignment:
        """assigned -> available, closing the open assignment"""
        check_role(context, OPERATION_ROLES["checkin"])
        item = self.store.get_item(context.tenant_id, item_id)

        if item.status != ItemStatus.ASSIGNED:
            raise _conflict(item, "Item is not currently assigned")

        assignment = self.store.get_open_assignment(context.tenant_id, item.id)
        if assignment is None:
            raise _conflict(item, "Item has no open assignment")

        returner = self.store.get_active_user(context.tenant_id, request.operator_id, label="Operator")
        assignment.close(returned_by=returner.id, condition=request.condition, notes=request.notes)

        item_changes = {}
        if request.location:
            item_changes["location"] = request.location
        if request.condition:
            item_changes["condition"] = request.condition

        previous = item.status
        log = self._log(
            context, item, ActionType.CHECKIN, ItemStatus.AVAILABLE,
            operator_id=returner.id,
            location=request.location,
            notes=request.notes,
            details={
                "assignment_id": str(assignment.id),
                "condition": request.condition.value if request.condition else None,
            },
        )
        self.store.apply_transition(
            item,
            ItemStatus.AVAILABLE,
            log=log,
            records=[assignment],
            assigned_to=None,
            item_changes=item_changes,
        )
        self._trace(context, item, previous, ActionType.CHECKIN)
        return assignment

    def schedule_maintenance(
        self, context: AuthContext, item_id: uuid.UUID, request: MaintenanceRequest
    ) -> MaintenanceRecord:
        """
        available | assigned -> maintenance.

        An open assignment stays open while the item is out of service; it is
        closed when the maintenance ends.
        """
        check_role(context, OPERATION_ROLES["schedule_maintenance"])
        item = self.store.get_item(context.tenant_id, item_id)

        allowed, reason = item.can_transition_to(ItemStatus.MAINTENANCE)
        if not allowed:
            raise _conflict(item, reason)

        if self.store.get_open_maintenance(context.tenant_id, item.id) is not None:
            raise _conflict(item, "Item already has an open maintenance record")

        performer = self.store.get_active_user(context.tenant_id, request.performed_by, label="Performing user")
        open_assignment = self.store.get_open_assignment(context.tenant_id, item.id)

        now = utc_now()
        scheduled = request.scheduled_date is not None and request.scheduled_date > now
        record = MaintenanceRecord(
            tenant_id=context.tenant_id,
            item_id=item.id,
            performed_by=performer.id,
            maintenance_type=request.maintenance_type,
            priority=request.priority,
            status=MaintenanceStatus.SCHEDULED if scheduled else MaintenanceStatus.IN_PROGRESS,
            description=request.description,
            notes=request.notes,
            cost=request.cost,
            scheduled_date=request.scheduled_date,
            started_at=None if scheduled else now,
            next_maintenance_date=request.next_maintenance_date,
        )

        item_changes = {}
        if request.next_maintenance_date:
            item_changes["next_maintenance_date"] = request.next_maintenance_date

        previous = item.status
        log = self._log(
            context, item, ActionType.MAINTENANCE_SCHEDULED, ItemStatus.MAINTENANCE,
            notes=f"{request.maintenance_type.value}: {request.description}",
            details={
                "maintenance_record_id": str(record.id),
                "maintenance_type": request.maintenance_type.value,
                "priority": request.priority.value,
                "cost": str(request.cost) if request.cost is not None else None,
                "open_assignment_id": str(open_assignment.id) if open_assignment else None,
            },
        )
        self.store.apply_transition(
            item,
            ItemStatus.MAINTENANCE,
            log=log,
            records=[record],
            assigned_to=None,
            item_changes=item_changes,
        )
        self._trace(context, item, previous, ActionType.MAINTENANCE_SCHEDULED)
        return record

    def start_maintenance(self, context: AuthContext, record_id: uuid.UUID) -> MaintenanceRecord:
        """scheduled -> in_progress on the record; the item is already in maintenance"""
        check_role(context, OPERATION_ROLES["start_maintenance"])
        record = self.store.get_maintenance_record(context.tenant_id, record_id)
        if not record.can_start():
            raise LifecycleConflict(
                "Maintenance record is not scheduled",
                maintenance_record_id=str(record.id),
                current_status=record.status.value,
            )
        return self.store.start_maintenance_record(record)

    def complete_maintenance(
        self, context: AuthContext, item_id: uuid.UUID, request: CompleteMaintenanceRequest
    ) -> MaintenanceRecord:
        """maintenance -> available | retired, completing the open record"""
        check_role(context, OPERATION_ROLES["complete_maintenance"])
        target = ItemStatus(request.outcome)
        if target == ItemStatus.RETIRED:
            check_role(context, OPERATION_ROLES["retire"])

        return self._end_maintenance(
            context, item_id, target,
            action=ActionType.MAINTENANCE_COMPLETED,
            cancel=False,
            notes=request.notes,
        )

    def cancel_maintenance(
        self, context: AuthContext, item_id: uuid.UUID, request: CancelMaintenanceRequest
    ) -> MaintenanceRecord:
        """
        maintenance -> retired, cancelling the open record.

        Only a completed record returns an item to service, so a cancellation
        that asks to keep the item is refused.
        """
        check_role(context, OPERATION_ROLES["cancel_maintenance"])
        if not request.retire:
            item = self.store.get_item(context.tenant_id, item_id)
            raise _conflict(item, "Cancelled maintenance retires the item; complete the record to return it to service")

        return self._end_maintenance(
            context, item_id, ItemStatus.RETIRED,
            action=ActionType.MAINTENANCE_CANCELLED,
            cancel=True,
            notes=request.notes,
        )

    def _end_maintenance(
        self,
        context: AuthContext,
        item_id: uuid.UUID,
        target: ItemStatus,
        action: ActionType,
        cancel: bool,
        notes: Optional[str],
    ) -> MaintenanceRecord:
        item = self.store.get_item(context.tenant_id, item_id)

        if item.status != ItemStatus.MAINTENANCE:
            raise _conflict(item, "Item is not in maintenance")

        record = self.store.get_open_maintenance(context.tenant_id, item.id)
        if record is None:
            raise _conflict(item, "Item has no open maintenance record")

        if cancel:
            record.transition_to_cancelled(notes)
        else:
            record.transition_to_completed(notes)

        records = [record]
        details = {"maintenance_record_id": str(record.id)}

        # An item taken out of service while checked out comes back unassigned
        open_assignment = self.store.get_open_assignment(context.tenant_id, item.id)
        if open_assignment is not None:
            open_assignment.close(returned_by=context.user_id, notes="Closed when maintenance ended")
            records.append(open_assignment)
            details["closed_assignment_id"] = str(open_assignment.id)

        item_changes = {}
        if not cancel:
            item_changes["last_maintenance_date"] = record.completed_date
            if record.next_maintenance_date:
                item_changes["next_maintenance_date"] = record.next_maintenance_date

        previous = item.status
        log = self._log(context, item, action, target, notes=notes, details=details)
        self.store.apply_transition(
            item,
            target,
            log=log,
            records=records,
            assigned_to=None,
            item_changes=item_changes,
        )
        self._trace(context, item, previous, action)
        return record

    def retire_item(self, context: AuthContext, item_id: uuid.UUID, request: RetireRequest) -> Item:
        """any non-retired state -> retired; closes whatever is still open"""
        check_role(context, OPERATION_ROLES["retire"])
        item = self.store.get_item(context.tenant_id, item_id)

        allowed, reason = item.can_transition_to(ItemStatus.RETIRED)
        if not allowed:
            raise _conflict(item, reason)

        records = []
        details = {}
        open_assignment = self.store.get_open_assignment(context.tenant_id, item.id)
        if open_assignment is not None:
            open_assignment.close(returned_by=context.user_id, notes="Closed on retirement")
            records.append(open_assignment)
            details["closed_assignment_id"] = str(open_assignment.id)

        open_maintenance = self.store.get_open_maintenance(context.tenant_id, item.id)
        if open_maintenance is not None:
            open_maintenance.transition_to_cancelled("Cancelled on retirement")
            records.append(open_maintenance)
            details["cancelled_maintenance_record_id"] = str(open_maintenance.id)

        previous = item.status
        log = self._log(context, item, ActionType.RETIRE, ItemStatus.RETIRED, notes=request.notes, details=details)
        self.store.apply_transition(item, ItemStatus.RETIRED, log=log, records=records, assigned_to=None)
        self._trace(context, item, previous, ActionType.RETIRE)
        return item

    # Helpers

    @staticmethod
    def _log(
        context: AuthContext,
        item: Item,
        action: ActionType,
        new_status: ItemStatus,
        operator_id: Optional[uuid.UUID] = None,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> ActionLog:
        return ActionLog(
            tenant_id=context.tenant_id,
            item_id=item.id,
            action_type=action,
            user_id=context.user_id,
            operator_id=operator_id,
            previous_state=item.status.value,
            new_state=new_status.value,
            location=location,
            notes=notes,
            details=details,
        )

    @staticmethod
    def _trace(context: AuthContext, item: Item, previous: ItemStatus, action: ActionType) -> None:
        logger.info(
            "Item transition",
            tenant_id=str(context.tenant_id),
            item_id=str(item.id),
            action=action.value,
            previous_status=previous.value,
            new_status=item.status.value,
            user_id=str(context.user_id),
        )


def get_lifecycle_engine(store: ItemStore = Depends(get_item_store)) -> LifecycleEngine:
    """FastAPI dependency; one engine per request, sharing the request's session"""
    return LifecycleEngine(store)
