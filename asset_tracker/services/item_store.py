"""
Item store - tenant scoped access to items and their lifecycle records

Every method takes the caller's tenant id and filters on it. Item status is
only ever written by ``apply_transition``, which performs a compare-and-swap
on the item's status and version and commits the linked records and the
action log entry in the same transaction.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
import uuid

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select
import structlog

from asset_tracker.core.exceptions import LifecycleConflict, NotFound, StoreUnavailable, ValidationFailed
from asset_tracker.models.action_log import ActionLog, ActionType
from asset_tracker.models.assignment import Assignment, AssignmentStatus, OPEN_ASSIGNMENT_STATUSES
from asset_tracker.models.item import Item, ItemStatus
from asset_tracker.models.maintenance_record import (
    MaintenanceRecord, MaintenanceStatus, OPEN_MAINTENANCE_STATUSES
)
from asset_tracker.models.types import utc_now
from asset_tracker.models.user import User

logger = structlog.get_logger(__name__)

# Fields an item update may touch; status and custody go through apply_transition
ITEM_DETAIL_FIELDS = frozenset({
    "name", "description", "category", "serial_number", "nfc_tag", "location", "condition",
})


class ItemStore:
    """Tenant scoped persistence for items, assignments, maintenance records and logs"""

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _guard(self):
        """Translate driver failures into StoreUnavailable"""
        try:
            yield
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Item store failure: {e}")
            raise StoreUnavailable()

    # Items

    def find_item(self, tenant_id: uuid.UUID, item_id: uuid.UUID) -> Optional[Item]:
        with self._guard():
            return self.session.exec(
                select(Item).where(Item.id == item_id, Item.tenant_id == tenant_id)
            ).first()

    def get_item(self, tenant_id: uuid.UUID, item_id: uuid.UUID) -> Item:
        item = self.find_item(tenant_id, item_id)
        if item is None:
            raise NotFound("Item not found", resource="item")
        return item

    def get_item_by_nfc_tag(self, tenant_id: uuid.UUID, tag_uid: str) -> Item:
        with self._guard():
            item = self.session.exec(
                select(Item).where(Item.nfc_tag == tag_uid, Item.tenant_id == tenant_id)
            ).first()
        if item is None:
            raise NotFound("NFC tag not found", resource="nfc_tag", tag_uid=tag_uid)
        return item

    def list_items(
        self,
        tenant_id: uuid.UUID,
        status: Optional[ItemStatus] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Item], int]:
        conditions = [Item.tenant_id == tenant_id]
        if status:
            conditions.append(Item.status == status)
        if category:
            conditions.append(Item.category == category)
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(
                Item.name.ilike(pattern),
                Item.serial_number.ilike(pattern),
                Item.nfc_tag.ilike(pattern),
            ))

        with self._guard():
            total = self.session.exec(select(func.count()).select_from(Item).where(*conditions)).one()
            items = self.session.exec(
                select(Item).where(*conditions).order_by(Item.name).offset(offset).limit(limit)
            ).all()
        return list(items), total

    def item_categories(self, tenant_id: uuid.UUID) -> List[Tuple[str, int]]:
        """Categories in use with their item counts, alphabetically"""
        with self._guard():
            rows = self.session.exec(
                select(Item.category, func.count())
                .where(Item.tenant_id == tenant_id)
                .group_by(Item.category)
                .order_by(Item.category)
            ).all()
        return [(category, count) for category, count in rows]

    def create_item(self, tenant_id: uuid.UUID, **fields: Any) -> Item:
        """Register a new item; it always starts available"""
        errors = self._uniqueness_errors(tenant_id, fields.get("nfc_tag"), fields.get("serial_number"))
        if errors:
            raise ValidationFailed(errors)

        item = Item(tenant_id=tenant_id, status=ItemStatus.AVAILABLE, **fields)
        with self._guard():
            self.session.add(item)
            self._commit_unique()
            self.session.refresh(item)
        return item

    def update_item_details(self, item: Item, changes: Dict[str, Any]) -> Item:
        unknown = set(changes) - ITEM_DETAIL_FIELDS
        if unknown:
            raise ValidationFailed([
                {"field": field, "message": "Field cannot be updated", "type": "extra_forbidden"}
                for field in sorted(unknown)
            ])

        errors = self._uniqueness_errors(
            item.tenant_id,
            changes.get("nfc_tag"),
            changes.get("serial_number"),
            exclude_item_id=item.id,
        )
        if errors:
            raise ValidationFailed(errors)

        for key, value in changes.items():
            setattr(item, key, value)
        item.updated_at = utc_now()

        with self._guard():
            self.session.add(item)
            self._commit_unique()
            self.session.refresh(item)
        return item

    def _uniqueness_errors(
        self,
        tenant_id: uuid.UUID,
        nfc_tag: Optional[str],
        serial_number: Optional[str],
        exclude_item_id: Optional[uuid.UUID] = None,
    ) -> List[Dict[str, str]]:
        errors = []
        with self._guard():
            if nfc_tag:
                # NFC tags are globally unique, but only report the clash, never the owner
                query = select(Item.id).where(Item.nfc_tag == nfc_tag)
                if exclude_item_id:
                    query = query.where(Item.id != exclude_item_id)
                if self.session.exec(query).first() is not None:
                    errors.append({
                        "field": "nfcTag",
                        "message": "NFC tag already assigned to another item",
                        "type": "unique",
                    })
            if serial_number:
                query = select(Item.id).where(Item.tenant_id == tenant_id, Item.serial_number == serial_number)
                if exclude_item_id:
                    query = query.where(Item.id != exclude_item_id)
                if self.session.exec(query).first() is not None:
                    errors.append({
                        "field": "serialNumber",
                        "message": "Serial number already exists",
                        "type": "unique",
                    })
        return errors

    def _commit_unique(self) -> None:
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ValidationFailed([{
                "field": "body",
                "message": "Item conflicts with an existing item",
                "type": "unique",
            }])

    # Users referenced by lifecycle requests

    def get_active_user(self, tenant_id: uuid.UUID, user_id: uuid.UUID, label: str = "User") -> User:
        with self._guard():
            user = self.session.exec(
                select(User).where(
                    User.id == user_id,
                    User.tenant_id == tenant_id,
                    User.is_active == True,  # noqa: E712
                )
            ).first()
        if user is None:
            raise NotFound(f"{label} not found", resource="user", user_id=str(user_id))
        return user

    # Assignments

    def get_open_assignment(self, tenant_id: uuid.UUID, item_id: uuid.UUID) -> Optional[Assignment]:
        with self._guard():
            return self.session.exec(
                select(Assignment).where(
                    Assignment.tenant_id == tenant_id,
                    Assignment.item_id == item_id,
                    Assignment.status.in_(OPEN_ASSIGNMENT_STATUSES),
                )
            ).first()

    def get_assignment(self, tenant_id: uuid.UUID, assignment_id: uuid.UUID) -> Assignment:
        with self._guard():
            assignment = self.session.exec(
                select(Assignment).where(Assignment.id == assignment_id, Assignment.tenant_id == tenant_id)
            ).first()
        if assignment is None:
            raise NotFound("Assignment not found", resource="assignment")
        return assignment

    def list_assignments(
        self,
        tenant_id: uuid.UUID,
        status: Optional[AssignmentStatus] = None,
        assigned_to: Optional[uuid.UUID] = None,
        item_id: Optional[uuid.UUID] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Assignment], int]:
        conditions = [Assignment.tenant_id == tenant_id]
        if status:
            conditions.append(Assignment.status == status)
        if assigned_to:
            conditions.append(Assignment.assigned_to == assigned_to)
        if item_id:
            conditions.append(Assignment.item_id == item_id)

        with self._guard():
            total = self.session.exec(select(func.count()).select_from(Assignment).where(*conditions)).one()
            assignments = self.session.exec(
                select(Assignment)
                .where(*conditions)
                .order_by(Assignment.assigned_at.desc())
                .offset(offset)
                .limit(limit)
            ).all()
        return list(assignments), total

    def update_assignment_notes(
        self, tenant_id: uuid.UUID, assignment_id: uuid.UUID, notes: Optional[str]
    ) -> Assignment:
        """Replace the notes of an assignment; status and custody are untouched"""
        assignment = self.get_assignment(tenant_id, assignment_id)
        assignment.notes = notes
        with self._guard():
            self.session.add(assignment)
            self.session.commit()
            self.session.refresh(assignment)
        return assignment

    def assignment_stats(self, tenant_id: uuid.UUID) -> Dict[str, int]:
        with self._guard():
            rows = self.session.exec(
                select(Assignment.status, func.count())
                .where(Assignment.tenant_id == tenant_id)
                .group_by(Assignment.status)
            ).all()
            holders = self.session.exec(
                select(func.count(func.distinct(Assignment.assigned_to))).where(
                    Assignment.tenant_id == tenant_id,
                    Assignment.status.in_(OPEN_ASSIGNMENT_STATUSES),
                )
            ).one()

        counts = {status.value: 0 for status in AssignmentStatus}
        for status, count in rows:
            counts[AssignmentStatus(status).value] = count
        return {
            "active_assignments": counts[AssignmentStatus.ACTIVE.value],
            "overdue_assignments": counts[AssignmentStatus.OVERDUE.value],
            "returned_assignments": counts[AssignmentStatus.RETURNED.value],
            "users_with_assignments": holders,
        }

    def mark_overdue(self, tenant_id: uuid.UUID, now: Optional[datetime] = None) -> int:
        """Flag active assignments past their expected return date as overdue"""
        now = now or utc_now()
        with self._guard():
            result = self.session.execute(
                update(Assignment)
                .where(
                    Assignment.tenant_id == tenant_id,
                    Assignment.status == AssignmentStatus.ACTIVE,
                    Assignment.expected_return_date.is_not(None),
                    Assignment.expected_return_date < now,
                )
                .values(status=AssignmentStatus.OVERDUE)
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        return result.rowcount

    # Maintenance records

    def get_open_maintenance(self, tenant_id: uuid.UUID, item_id: uuid.UUID) -> Optional[MaintenanceRecord]:
        with self._guard():
            return self.session.exec(
                select(MaintenanceRecord).where(
                    MaintenanceRecord.tenant_id == tenant_id,
                    MaintenanceRecord.item_id == item_id,
                    MaintenanceRecord.status.in_(OPEN_MAINTENANCE_STATUSES),
                )
            ).first()

    def get_maintenance_record(self, tenant_id: uuid.UUID, record_id: uuid.UUID) -> MaintenanceRecord:
        with self._guard():
            record = self.session.exec(
                select(MaintenanceRecord).where(
                    MaintenanceRecord.id == record_id,
                    MaintenanceRecord.tenant_id == tenant_id,
                )
            ).first()
        if record is None:
            raise NotFound("Maintenance record not found", resource="maintenance_record")
        return record

    def list_maintenance_records(
        self,
        tenant_id: uuid.UUID,
        status: Optional[MaintenanceStatus] = None,
        item_id: Optional[uuid.UUID] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[MaintenanceRecord], int]:
        conditions = [MaintenanceRecord.tenant_id == tenant_id]
        if status:
            conditions.append(MaintenanceRecord.status == status)
        if item_id:
            conditions.append(MaintenanceRecord.item_id == item_id)

        with self._guard():
            total = self.session.exec(
                select(func.count()).select_from(MaintenanceRecord).where(*conditions)
            ).one()
            records = self.session.exec(
                select(MaintenanceRecord)
                .where(*conditions)
                .order_by(MaintenanceRecord.created_at.desc())
                .offset(offset)
                .limit(limit)
            ).all()
        return list(records), total

    def start_maintenance_record(self, record: MaintenanceRecord) -> MaintenanceRecord:
        """
        scheduled -> in_progress, leaving the item untouched.

        Guarded on the stored status so a record completed or cancelled by a
        concurrent request is never reopened.
        """
        now = utc_now()
        with self._guard():
            result = self.session.execute(
                update(MaintenanceRecord)
                .where(
                    MaintenanceRecord.id == record.id,
                    MaintenanceRecord.tenant_id == record.tenant_id,
                    MaintenanceRecord.status == MaintenanceStatus.SCHEDULED,
                )
                .values(status=MaintenanceStatus.IN_PROGRESS, started_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.session.rollback()
                self.session.refresh(record)
                logger.info(
                    "Maintenance start lost a race",
                    maintenance_record_id=str(record.id),
                    current_status=record.status.value,
                )
                raise LifecycleConflict(
                    "Maintenance record is not scheduled",
                    maintenance_record_id=str(record.id),
                    current_status=record.status.value,
                )
            self.session.commit()
            self.session.refresh(record)
        return record

    # Action log

    def list_action_logs(
        self,
        tenant_id: uuid.UUID,
        item_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        action_type: Optional[ActionType] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[ActionLog], int]:
        conditions = [ActionLog.tenant_id == tenant_id]
        if item_id:
            conditions.append(ActionLog.item_id == item_id)
        if user_id:
            conditions.append(ActionLog.user_id == user_id)
        if action_type:
            conditions.append(ActionLog.action_type == action_type)
        if start_date:
            conditions.append(ActionLog.timestamp >= start_date)
        if end_date:
            conditions.append(ActionLog.timestamp <= end_date)

        with self._guard():
            total = self.session.exec(select(func.count()).select_from(ActionLog).where(*conditions)).one()
            logs = self.session.exec(
                select(ActionLog)
                .where(*conditions)
                .order_by(ActionLog.timestamp.desc())
                .offset(offset)
                .limit(limit)
            ).all()
        return list(logs), total

    def action_log_summary(
        self,
        tenant_id: uuid.UUID,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        recent: int = 10,
    ) -> Dict[str, Any]:
        """Totals per action type plus the latest entries in the window"""
        conditions = [ActionLog.tenant_id == tenant_id]
        if start_date:
            conditions.append(ActionLog.timestamp >= start_date)
        if end_date:
            conditions.append(ActionLog.timestamp <= end_date)

        with self._guard():
            rows = self.session.exec(
                select(ActionLog.action_type, func.count())
                .where(*conditions)
                .group_by(ActionLog.action_type)
            ).all()
            latest = self.session.exec(
                select(ActionLog)
                .where(*conditions)
                .order_by(ActionLog.timestamp.desc())
                .limit(recent)
            ).all()

        by_type = {ActionType(action_type).value: count for action_type, count in rows}
        return {
            "total_actions": sum(by_type.values()),
            "actions_by_type": by_type,
            "recent_activity": list(latest),
        }

    # Transitions

    def apply_transition(
        self,
        item: Item,
        new_status: ItemStatus,
        log: ActionLog,
        records: Iterable[Any] = (),
        assigned_to: Optional[uuid.UUID] = None,
        item_changes: Optional[Dict[str, Any]] = None,
    ) -> Item:
        """
        Move ``item`` to ``new_status`` as one unit of work.

        The status write only succeeds if the stored row still has the status
        and version this request read; otherwise nothing is written and
        ``LifecycleConflict`` is raised so the caller can re-fetch and retry.
        """
        expected_status = item.status
        expected_version = item.version
        values = {
            **(item_changes or {}),
            "status": new_status,
            "current_assigned_to": assigned_to,
            "version": expected_version + 1,
            "updated_at": utc_now(),
        }

        try:
            result = self.session.execute(
                update(Item)
                .where(
                    Item.id == item.id,
                    Item.tenant_id == item.tenant_id,
                    Item.status == expected_status,
                    Item.version == expected_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.session.rollback()
                logger.info(
                    "Lifecycle transition lost a race",
                    item_id=str(item.id),
                    expected_status=expected_status.value,
                    expected_version=expected_version,
                )
                raise LifecycleConflict(
                    "Item was modified by another request. Please refresh and try again.",
                    expected_status=expected_status.value,
                )

            for record in records:
                self.session.add(record)
            self.session.add(log)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Lifecycle transition failed: {e}")
            raise StoreUnavailable()

        with self._guard():
            self.session.refresh(item)
        return item
