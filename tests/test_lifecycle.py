"""
Unit tests for the item lifecycle engine
"""

import pytest
from datetime import datetime, timedelta, timezone
import uuid
from sqlalchemy import create_engine, update
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from asset_tracker.core.exceptions import InsufficientRole, LifecycleConflict, NotFound, StoreUnavailable
from asset_tracker.models.action_log import ActionLog, ActionType
from asset_tracker.models.assignment import Assignment, AssignmentStatus
from asset_tracker.models.item import Item, ItemCondition, ItemStatus
from asset_tracker.models.maintenance_record import MaintenanceRecord, MaintenanceStatus, MaintenanceType
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
from asset_tracker.services.item_store import ItemStore
from asset_tracker.services.lifecycle import LifecycleEngine

from conftest import context_for, test_engine


@pytest.fixture
def admin(users):
    return users[UserRole.TENANT_ADMIN]


@pytest.fixture
def operator(users):
    return users[UserRole.OPERATOR]


@pytest.fixture
def admin_ctx(admin, tenant):
    return context_for(admin, tenant)


@pytest.fixture
def operator_ctx(operator, tenant):
    return context_for(operator, tenant)


def _assignment(holder, assigner, **kwargs):
    return AssignmentRequest(operator_id=holder.id, assigned_by=assigner.id, **kwargs)


def _maintenance(performer, **kwargs):
    kwargs.setdefault("maintenance_type", MaintenanceType.REPAIR)
    kwargs.setdefault("description", "Replace worn belt")
    return MaintenanceRequest(performed_by=performer.id, **kwargs)


def _logs(db, item):
    return db.exec(select(ActionLog).where(ActionLog.item_id == item.id)).all()


@pytest.fixture
def item_in(engine, make_item, tenant, admin, operator, admin_ctx):
    """Build an item in the requested state through the engine itself"""
    def _item_in(state: ItemStatus) -> Item:
        item = make_item(tenant)
        if state == ItemStatus.ASSIGNED:
            engine.assign_item(admin_ctx, item.id, _assignment(operator, admin))
        elif state == ItemStatus.MAINTENANCE:
            engine.schedule_maintenance(admin_ctx, item.id, _maintenance(operator))
        elif state == ItemStatus.RETIRED:
            engine.retire_item(admin_ctx, item.id, RetireRequest())
        assert item.status == state
        return item

    return _item_in


OPERATIONS = ["assign", "checkin", "maintenance", "complete", "retire"]

LEGAL = {
    ItemStatus.AVAILABLE: {"assign": ItemStatus.ASSIGNED, "maintenance": ItemStatus.MAINTENANCE,
                           "retire": ItemStatus.RETIRED},
    ItemStatus.ASSIGNED: {"checkin": ItemStatus.AVAILABLE, "maintenance": ItemStatus.MAINTENANCE,
                          "retire": ItemStatus.RETIRED},
    ItemStatus.MAINTENANCE: {"complete": ItemStatus.AVAILABLE, "retire": ItemStatus.RETIRED},
    ItemStatus.RETIRED: {},
}


class TestStateMachine:
    """Every operation from every state"""

    def _run(self, engine, ctx, operation, item, admin, operator):
        if operation == "assign":
            engine.assign_item(ctx, item.id, _assignment(operator, admin))
        elif operation == "checkin":
            engine.check_in_item(ctx, item.id, CheckInOutRequest(operator_id=operator.id))
        elif operation == "maintenance":
            engine.schedule_maintenance(ctx, item.id, _maintenance(operator))
        elif operation == "complete":
            engine.complete_maintenance(ctx, item.id, CompleteMaintenanceRequest())
        elif operation == "retire":
            engine.retire_item(ctx, item.id, RetireRequest())

    @pytest.mark.parametrize("state", list(ItemStatus))
    @pytest.mark.parametrize("operation", OPERATIONS)
    def test_transition_matrix(self, db, engine, item_in, admin_ctx, admin, operator, state, operation):
        item = item_in(state)
        version = item.version
        logs_before = len(_logs(db, item))

        if operation in LEGAL[state]:
            self._run(engine, admin_ctx, operation, item, admin, operator)
            assert item.status == LEGAL[state][operation]
            assert item.version == version + 1
            assert len(_logs(db, item)) == logs_before + 1
        else:
            with pytest.raises(LifecycleConflict):
                self._run(engine, admin_ctx, operation, item, admin, operator)
            db.refresh(item)
            assert item.status == state
            assert item.version == version
            assert len(_logs(db, item)) == logs_before

    def test_assigned_to_set_only_while_assigned(self, engine, item_in, admin_ctx, operator):
        item = item_in(ItemStatus.ASSIGNED)
        assert item.current_assigned_to == operator.id

        engine.check_in_item(admin_ctx, item.id, CheckInOutRequest(operator_id=operator.id))
        assert item.current_assigned_to is None


class TestAssign:

    def test_scenario_assign_available_item(self, db, engine, make_item, tenant, admin, operator, admin_ctx):
        item = make_item(tenant)

        assignment = engine.assign_item(admin_ctx, item.id, _assignment(operator, admin, notes="Night shift"))

        assert item.status == ItemStatus.ASSIGNED
        assert item.current_assigned_to == operator.id
        assert assignment.status == AssignmentStatus.ACTIVE
        assert assignment.assigned_to == operator.id
        assert assignment.assigned_by == admin.id

        logs = _logs(db, item)
        assert len(logs) == 1
        assert logs[0].action_type == ActionType.ASSIGN
        assert logs[0].previous_state == "available"
        assert logs[0].new_state == "assigned"
        assert logs[0].user_id == admin.id
        assert logs[0].operator_id == operator.id

    def test_due_date_recorded(self, engine, make_item, tenant, admin, operator, admin_ctx):
        item = make_item(tenant)
        due = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

        assignment = engine.assign_item(admin_ctx, item.id, _assignment(operator, admin, due_date=due))
        assert assignment.expected_return_date == due

    def test_timestamps_stored_as_utc(self, db, engine, make_item, tenant, admin, operator, admin_ctx):
        item = make_item(tenant)
        due = datetime(2030, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assignment = engine.assign_item(admin_ctx, item.id, _assignment(operator, admin, due_date=due))

        db.expire_all()
        stored = db.get(Assignment, assignment.id)

        assert stored.expected_return_date == datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert stored.expected_return_date.utcoffset() == timedelta(0)
        assert stored.assigned_at.utcoffset() == timedelta(0)

    def test_operator_cannot_assign(self, db, engine, make_item, tenant, admin, operator, operator_ctx):
        item = make_item(tenant)

        with pytest.raises(InsufficientRole):
            engine.assign_item(operator_ctx, item.id, _assignment(operator, admin))
        assert db.exec(select(Assignment)).all() == []

    def test_holder_from_other_tenant(self, db, engine, make_item, make_tenant, make_user, tenant, admin, admin_ctx):
        outsider = make_user(make_tenant(subdomain="globex"))
        item = make_item(tenant)

        with pytest.raises(NotFound):
            engine.assign_item(admin_ctx, item.id, _assignment(outsider, admin))
        db.refresh(item)
        assert item.status == ItemStatus.AVAILABLE

    def test_inactive_holder(self, engine, make_item, make_user, tenant, admin, admin_ctx):
        inactive = make_user(tenant, is_active=False)
        item = make_item(tenant)

        with pytest.raises(NotFound):
            engine.assign_item(admin_ctx, item.id, _assignment(inactive, admin))

    def test_unknown_item(self, engine, admin, operator, admin_ctx):
        with pytest.raises(NotFound):
            engine.assign_item(admin_ctx, uuid.uuid4(), _assignment(operator, admin))

    def test_checkout_records_caller_as_assigner(self, db, engine, make_item, tenant, operator, operator_ctx):
        item = make_item(tenant)

        assignment = engine.check_out_item(
            operator_ctx,
            item.id,
            CheckInOutRequest(operator_id=operator.id, location="Site 4", condition=ItemCondition.GOOD),
        )

        assert assignment.assigned_by == operator.id
        assert item.status == ItemStatus.ASSIGNED
        assert item.location == "Site 4"
        assert _logs(db, item)[0].action_type == ActionType.CHECKOUT


class TestCheckIn:

    def test_scenario_check_in_assigned_item(self, db, engine, item_in, operator, operator_ctx):
        item = item_in(ItemStatus.ASSIGNED)

        assignment = engine.check_in_item(
            operator_ctx,
            item.id,
            CheckInOutRequest(operator_id=operator.id, location="Shelf 2", condition=ItemCondition.FAIR),
        )

        assert item.status == ItemStatus.AVAILABLE
        assert item.current_assigned_to is None
        assert item.location == "Shelf 2"
        assert item.condition == ItemCondition.FAIR
        assert assignment.status == AssignmentStatus.RETURNED
        assert assignment.actual_return_date is not None
        assert assignment.returned_by == operator.id
        assert assignment.return_condition == ItemCondition.FAIR

    def test_assigned_item_without_open_assignment(self, engine, make_item, tenant, operator, operator_ctx):
        item = make_item(tenant, status=ItemStatus.ASSIGNED, current_assigned_to=operator.id)

        with pytest.raises(LifecycleConflict):
            engine.check_in_item(operator_ctx, item.id, CheckInOutRequest(operator_id=operator.id))
        assert item.status == ItemStatus.ASSIGNED


class TestMaintenance:

    def test_viewer_cannot_schedule(self, db, engine, make_item, tenant, users, operator):
        item = make_item(tenant)
        viewer_ctx = context_for(users[UserRole.VIEWER], tenant)

        with pytest.raises(InsufficientRole):
            engine.schedule_maintenance(viewer_ctx, item.id, _maintenance(operator))

        assert db.exec(select(MaintenanceRecord)).all() == []
        db.refresh(item)
        assert item.status == ItemStatus.AVAILABLE

    def test_immediate_maintenance_is_in_progress(self, engine, make_item, tenant, operator, operator_ctx):
        item = make_item(tenant)

        record = engine.schedule_maintenance(operator_ctx, item.id, _maintenance(operator))

        assert record.status == MaintenanceStatus.IN_PROGRESS
        assert record.started_at is not None
        assert item.status == ItemStatus.MAINTENANCE

    def test_future_maintenance_is_scheduled_then_started(self, engine, make_item, tenant, operator, operator_ctx):
        item = make_item(tenant)
        when = datetime.now(timezone.utc) + timedelta(days=3)

        record = engine.schedule_maintenance(operator_ctx, item.id, _maintenance(operator, scheduled_date=when))
        assert record.status == MaintenanceStatus.SCHEDULED

        started = engine.start_maintenance(operator_ctx, record.id)
        assert started.status == MaintenanceStatus.IN_PROGRESS
        assert item.status == ItemStatus.MAINTENANCE

        with pytest.raises(LifecycleConflict):
            engine.start_maintenance(operator_ctx, record.id)

    def test_assigned_item_keeps_assignment_during_maintenance(
        self, db, engine, item_in, operator, operator_ctx
    ):
        item = item_in(ItemStatus.ASSIGNED)
        assignment = db.exec(select(Assignment).where(Assignment.item_id == item.id)).one()

        engine.schedule_maintenance(operator_ctx, item.id, _maintenance(operator))

        assert item.status == ItemStatus.MAINTENANCE
        assert item.current_assigned_to is None
        db.refresh(assignment)
        assert assignment.status == AssignmentStatus.ACTIVE

        engine.complete_maintenance(operator_ctx, item.id, CompleteMaintenanceRequest())

        db.refresh(assignment)
        assert item.status == ItemStatus.AVAILABLE
        assert assignment.status == AssignmentStatus.RETURNED

    def test_complete_records_dates(self, engine, make_item, tenant, operator, operator_ctx):
        item = make_item(tenant)
        next_due = datetime(2031, 6, 1, tzinfo=timezone.utc)
        engine.schedule_maintenance(operator_ctx, item.id, _maintenance(operator, next_maintenance_date=next_due))

        record = engine.complete_maintenance(operator_ctx, item.id, CompleteMaintenanceRequest(notes="Done"))

        assert record.status == MaintenanceStatus.COMPLETED
        assert record.completed_date is not None
        assert item.last_maintenance_date == record.completed_date
        assert item.next_maintenance_date == next_due

    def test_operator_cannot_complete_into_retirement(self, engine, item_in, operator_ctx):
        item = item_in(ItemStatus.MAINTENANCE)

        with pytest.raises(InsufficientRole):
            engine.complete_maintenance(operator_ctx, item.id, CompleteMaintenanceRequest(outcome="retired"))
        assert item.status == ItemStatus.MAINTENANCE

    def test_admin_completes_into_retirement(self, engine, item_in, admin_ctx):
        item = item_in(ItemStatus.MAINTENANCE)

        engine.complete_maintenance(admin_ctx, item.id, CompleteMaintenanceRequest(outcome="retired"))
        assert item.status == ItemStatus.RETIRED

    def test_cancel_into_retirement(self, db, engine, item_in, admin_ctx):
        item = item_in(ItemStatus.MAINTENANCE)

        record = engine.cancel_maintenance(admin_ctx, item.id, CancelMaintenanceRequest(retire=True))

        assert record.status == MaintenanceStatus.CANCELLED
        assert item.status == ItemStatus.RETIRED
        assert ActionType.MAINTENANCE_CANCELLED in {log.action_type for log in _logs(db, item)}

    def test_cancel_without_retirement_is_refused(self, db, engine, item_in, admin_ctx):
        item = item_in(ItemStatus.MAINTENANCE)
        version = item.version

        with pytest.raises(LifecycleConflict):
            engine.cancel_maintenance(admin_ctx, item.id, CancelMaintenanceRequest(retire=False))

        db.refresh(item)
        record = db.exec(select(MaintenanceRecord).where(MaintenanceRecord.item_id == item.id)).one()
        assert item.status == ItemStatus.MAINTENANCE
        assert item.version == version
        assert record.status == MaintenanceStatus.IN_PROGRESS

    def test_cancel_retires_by_default(self, engine, item_in, admin_ctx):
        item = item_in(ItemStatus.MAINTENANCE)

        engine.cancel_maintenance(admin_ctx, item.id, CancelMaintenanceRequest())
        assert item.status == ItemStatus.RETIRED

    def test_operator_cannot_cancel(self, engine, item_in, operator_ctx):
        item = item_in(ItemStatus.MAINTENANCE)

        with pytest.raises(InsufficientRole):
            engine.cancel_maintenance(operator_ctx, item.id, CancelMaintenanceRequest())


class TestRetire:

    def test_retire_closes_open_assignment(self, db, engine, item_in, admin_ctx):
        item = item_in(ItemStatus.ASSIGNED)

        engine.retire_item(admin_ctx, item.id, RetireRequest(notes="Lost"))

        assignment = db.exec(select(Assignment).where(Assignment.item_id == item.id)).one()
        assert item.status == ItemStatus.RETIRED
        assert item.current_assigned_to is None
        assert assignment.status == AssignmentStatus.RETURNED

    def test_retire_cancels_open_maintenance(self, db, engine, item_in, admin_ctx):
        item = item_in(ItemStatus.MAINTENANCE)

        engine.retire_item(admin_ctx, item.id, RetireRequest())

        record = db.exec(select(MaintenanceRecord).where(MaintenanceRecord.item_id == item.id)).one()
        assert record.status == MaintenanceStatus.CANCELLED

    def test_operator_cannot_retire(self, engine, make_item, tenant, operator_ctx):
        item = make_item(tenant)

        with pytest.raises(InsufficientRole):
            engine.retire_item(operator_ctx, item.id, RetireRequest())
        assert item.status == ItemStatus.AVAILABLE


class TestLookup:

    def test_lookup_returns_custody_and_history(self, engine, item_in, operator, operator_ctx):
        item = item_in(ItemStatus.ASSIGNED)

        result = engine.lookup(operator_ctx, NFCLookupRequest(tag_uid=item.nfc_tag))

        assert result.item.id == item.id
        assert result.assignment.assigned_to == operator.id
        assert result.maintenance is None
        assert [log.action_type for log in result.recent_actions] == [ActionType.ASSIGN]

    def test_unknown_tag(self, engine, tenant, operator_ctx):
        with pytest.raises(NotFound):
            engine.lookup(operator_ctx, NFCLookupRequest(tag_uid="04:FF:FF:FF"))


class TestConcurrency:
    """Two requests racing on the same item"""

    def test_scenario_concurrent_assignments(self, db, engine, make_item, make_user, tenant, admin, operator, admin_ctx):
        item = make_item(tenant)
        second_operator = make_user(tenant)

        # Second request reads the item before the first one commits
        with Session(test_engine, expire_on_commit=False) as other_session:
            other_engine = LifecycleEngine(ItemStore(other_session))
            other_engine.store.get_item(tenant.id, item.id)

            engine.assign_item(admin_ctx, item.id, _assignment(operator, admin))

            with pytest.raises(LifecycleConflict):
                other_engine.assign_item(admin_ctx, item.id, _assignment(second_operator, admin))

        assignments = db.exec(select(Assignment).where(Assignment.item_id == item.id)).all()
        assert len(assignments) == 1
        assert assignments[0].assigned_to == operator.id

    def test_start_after_completion_loses(self, db, engine, make_item, tenant, operator, operator_ctx):
        item = make_item(tenant)
        when = datetime.now(timezone.utc) + timedelta(days=3)
        record = engine.schedule_maintenance(operator_ctx, item.id, _maintenance(operator, scheduled_date=when))

        # Second request reads the scheduled record before the completion commits
        with Session(test_engine, expire_on_commit=False) as other_session:
            other_store = ItemStore(other_session)
            stale = other_store.get_maintenance_record(tenant.id, record.id)
            assert stale.status == MaintenanceStatus.SCHEDULED

            engine.complete_maintenance(operator_ctx, item.id, CompleteMaintenanceRequest())

            with pytest.raises(LifecycleConflict):
                other_store.start_maintenance_record(stale)

        db.refresh(record)
        assert record.status == MaintenanceStatus.COMPLETED
        assert record.started_at is None
        assert item.status == ItemStatus.AVAILABLE

    def test_stale_version_loses(self, db, store, make_item, tenant, admin):
        item = make_item(tenant)

        # Another worker moves the item on behind this session's back
        db.execute(
            update(Item)
            .where(Item.id == item.id)
            .values(version=item.version + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()

        log = ActionLog(
            tenant_id=tenant.id,
            item_id=item.id,
            action_type=ActionType.RETIRE,
            user_id=admin.id,
            previous_state="available",
            new_state="retired",
        )
        with pytest.raises(LifecycleConflict):
            store.apply_transition(item, ItemStatus.RETIRED, log=log)

        assert db.exec(select(ActionLog)).all() == []


class TestStoreFailure:

    def test_failed_commit_leaves_nothing_behind(self, db, engine, make_item, tenant, admin, operator, admin_ctx, monkeypatch):
        item = make_item(tenant)

        def broken_commit():
            raise OperationalError("COMMIT", {}, Exception("connection lost"))

        monkeypatch.setattr(db, "commit", broken_commit)
        with pytest.raises(StoreUnavailable):
            engine.assign_item(admin_ctx, item.id, _assignment(operator, admin))
        monkeypatch.undo()

        db.refresh(item)
        assert item.status == ItemStatus.AVAILABLE
        assert item.current_assigned_to is None
        assert db.exec(select(Assignment)).all() == []
        assert db.exec(select(ActionLog)).all() == []

    def test_unreachable_store(self, tenant, admin_ctx):
        # Fresh engine with no tables behaves like a broken backend
        broken = create_engine("sqlite:///:memory:")
        with Session(broken) as session:
            with pytest.raises(StoreUnavailable):
                LifecycleEngine(ItemStore(session)).lookup(admin_ctx, NFCLookupRequest(tag_uid="04:00"))

    def test_refresh_failure_after_commit(self, db, engine, make_item, tenant, admin, operator, admin_ctx, monkeypatch):
        item = make_item(tenant)

        def broken_refresh(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(db, "refresh", broken_refresh)
        with pytest.raises(StoreUnavailable):
            engine.assign_item(admin_ctx, item.id, _assignment(operator, admin))


class TestOverdue:

    def test_mark_overdue(self, db, store, engine, make_item, tenant, admin, operator, admin_ctx):
        late = make_item(tenant)
        on_time = make_item(tenant)
        past = datetime(2020, 1, 1, tzinfo=timezone.utc)
        future = datetime(2099, 1, 1, tzinfo=timezone.utc)
        engine.assign_item(admin_ctx, late.id, _assignment(operator, admin, due_date=past))
        engine.assign_item(admin_ctx, on_time.id, _assignment(operator, admin, due_date=future))

        assert store.mark_overdue(tenant.id) == 1

        stats = store.assignment_stats(tenant.id)
        assert stats["overdue_assignments"] == 1
        assert stats["active_assignments"] == 1
        assert stats["users_with_assignments"] == 1

        # Overdue assignments are still open and can be checked in
        engine.check_in_item(admin_ctx, late.id, CheckInOutRequest(operator_id=operator.id))
        assert late.status == ItemStatus.AVAILABLE
