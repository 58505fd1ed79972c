"""
API routers
"""

from asset_tracker.api import (
    action_logs, assignments, items, maintenance, nfc, tenants, users, users_auth
)

__all__ = [
    "action_logs",
    "assignments",
    "items",
    "maintenance",
    "nfc",
    "tenants",
    "users",
    "users_auth",
]
