"""Pydantic schemas for invite code requests and results."""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime

from gatekeeper.core.clock import ensure_utc, utcnow
from gatekeeper.core.exceptions import GatekeeperError
from gatekeeper.models.invite_code import InviteCode, InviteCodeStatus
from gatekeeper.permissions.role_key import check_action

INVITE_CODE_PATTERN = r"^[A-Z0-9]{8}$"
MAX_INVITE_EXPIRATION_HOURS = 24 * 365 * 10


# ---- Requests ----
class CreateInviteRequest(BaseModel):
    role_keys: List[str]
    expires_in_hours: Optional[float] = Field(
        None, gt=0, le=MAX_INVITE_EXPIRATION_HOURS, allow_inf_nan=False
    )

    @field_validator("role_keys")
    @classmethod
    def check_role_keys(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("At least one role must be provided")
        keys = []
        for raw in value:
            try:
                key = check_action(raw).key
            except GatekeeperError as exc:
                raise ValueError(exc.message) from exc
            if key not in keys:
                keys.append(key)
        return keys

class InviteCodeLookup(BaseModel):
    code: str = Field(..., pattern=INVITE_CODE_PATTERN)

class ListInviteCodesRequest(BaseModel):
    status: Optional[InviteCodeStatus] = None
    limit: int = Field(50, ge=1, le=100)
    offset: int = Field(0, ge=0)


# ---- Results ----
class CreatedInvite(BaseModel):
    code_id: int
    code: str
    role_keys: List[str]
    expires_at: datetime

class InviteValidation(BaseModel):
    is_valid: bool
    role_keys: List[str] = []
    message: Optional[str] = None

class RedemptionResult(BaseModel):
    assigned_roles: List[str] = []
    failed_roles: List[str] = []

class InviteCodeOut(BaseModel):
    code_id: int
    code: str
    role_keys: List[str]
    status: InviteCodeStatus
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: datetime
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    revoked_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_model(cls, invite: InviteCode, now: Optional[datetime] = None) -> "InviteCodeOut":
        return cls(
            code_id=invite.code_id,
            code=invite.code,
            role_keys=list(invite.role_keys or []),
            status=invite.status_at(now or utcnow()),
            created_by=invite.created_by,
            created_at=ensure_utc(invite.created_at),
            expires_at=ensure_utc(invite.expires_at),
            used_by=invite.used_by,
            used_at=ensure_utc(invite.used_at),
            revoked_by=invite.revoked_by,
            revoked_at=ensure_utc(invite.revoked_at),
        )

class InviteCodePage(BaseModel):
    data: List[InviteCodeOut]
    total_count: int
    has_more: bool
    has_previous: bool
