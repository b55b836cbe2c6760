# entitlement facts: read-only records owned by the billing side

from enum import Enum
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class EntitlementKind(str, Enum):
    ACTIVE_SUBSCRIPTION = "active_subscription"
    ACTIVE_DAY_PASS = "active_day_pass"
    ADMIN_BYPASS = "admin_bypass"
    NONE = "none"


class EntitlementFact(BaseModel):
    kind: EntitlementKind
    valid_until: Optional[datetime] = None
    facility_ids: list[str] = Field(default_factory=list)


class Entitlement(BaseModel):
    """outcome of a successful gate check"""
    basis: EntitlementKind
    bypass: bool = False
