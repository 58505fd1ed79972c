from asset_tracker.models.tenant import Tenant
from asset_tracker.models.user import User, UserRole
from asset_tracker.models.item import Item, ItemStatus, ItemCondition, ITEM_TRANSITIONS
from asset_tracker.models.assignment import Assignment, AssignmentStatus, OPEN_ASSIGNMENT_STATUSES
from asset_tracker.models.maintenance_record import (
    MaintenanceRecord, MaintenanceType, MaintenancePriority, MaintenanceStatus, OPEN_MAINTENANCE_STATUSES
)
from asset_tracker.models.action_log import ActionLog, ActionType
