"""
Request validators for asset lifecycle operations

Each ``validate_*`` function takes an untyped payload (the decoded JSON body)
and returns a typed, normalized request or raises ``ValidationFailed`` listing
every offending field. They never touch storage or tenant context.
"""

from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar
import uuid

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from asset_tracker.core.exceptions import ValidationFailed
from asset_tracker.models.item import ItemCondition
from asset_tracker.models.maintenance_record import MaintenancePriority, MaintenanceType
from asset_tracker.models.types import as_utc

RequestT = TypeVar("RequestT", bound="LifecycleRequest")


def _iso_datetime(value: Any) -> Any:
    """Only ISO 8601 strings (or datetimes) are accepted; normalized to UTC"""
    if value is None:
        return value
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("must be an ISO 8601 date")
    if not isinstance(value, datetime):
        raise ValueError("must be an ISO 8601 date")
    return as_utc(value)


IsoDatetime = Annotated[Optional[datetime], BeforeValidator(_iso_datetime)]


class LifecycleRequest(BaseModel):
    """Base for lifecycle payloads: camelCase on the wire, unknown keys rejected"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
        frozen=True,
    )


class NFCLookupRequest(LifecycleRequest):
    tag_uid: str = Field(..., min_length=1, max_length=50)


class AssignmentRequest(LifecycleRequest):
    operator_id: uuid.UUID
    assigned_by: uuid.UUID
    notes: Optional[str] = Field(default=None, max_length=500)
    due_date: IsoDatetime = None


class CheckInOutRequest(LifecycleRequest):
    operator_id: uuid.UUID
    location: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)
    condition: Optional[ItemCondition] = None


class MaintenanceRequest(LifecycleRequest):
    maintenance_type: MaintenanceType
    performed_by: uuid.UUID
    description: str = Field(..., min_length=1, max_length=1000)
    cost: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    next_maintenance_date: IsoDatetime = None
    notes: Optional[str] = Field(default=None, max_length=500)
    priority: MaintenancePriority = MaintenancePriority.MEDIUM
    scheduled_date: IsoDatetime = None


class CompleteMaintenanceRequest(LifecycleRequest):
    outcome: Literal["available", "retired"] = "available"
    notes: Optional[str] = Field(default=None, max_length=500)


class CancelMaintenanceRequest(LifecycleRequest):
    # A cancelled record never returns the item to service
    retire: bool = True
    notes: Optional[str] = Field(default=None, max_length=500)


class RetireRequest(LifecycleRequest):
    notes: Optional[str] = Field(default=None, max_length=500)


def _field_errors(exc: ValidationError) -> List[Dict[str, str]]:
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "body"
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    return errors


def validate_payload(schema: Type[RequestT], payload: Any) -> RequestT:
    """Validate an untyped payload against schema, reporting every violation"""
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValidationFailed([{
            "field": "body",
            "message": "Request body must be a JSON object",
            "type": "model_type",
        }])

    try:
        return schema.model_validate(dict(payload))
    except ValidationError as e:
        raise ValidationFailed(_field_errors(e))


def validate_nfc_lookup(payload: Any) -> NFCLookupRequest:
    return validate_payload(NFCLookupRequest, payload)


def validate_assignment(payload: Any) -> AssignmentRequest:
    return validate_payload(AssignmentRequest, payload)


def validate_check_in_out(payload: Any) -> CheckInOutRequest:
    return validate_payload(CheckInOutRequest, payload)


def validate_maintenance(payload: Any) -> MaintenanceRequest:
    return validate_payload(MaintenanceRequest, payload)


def validate_complete_maintenance(payload: Any) -> CompleteMaintenanceRequest:
    return validate_payload(CompleteMaintenanceRequest, payload)


def validate_cancel_maintenance(payload: Any) -> CancelMaintenanceRequest:
    return validate_payload(CancelMaintenanceRequest, payload)


def validate_retire(payload: Any) -> RetireRequest:
    return validate_payload(RetireRequest, payload)
