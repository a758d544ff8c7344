"""Invite code service: mint, validate, redeem and revoke role bundles."""

import logging
import secrets
import string
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from gatekeeper.core.clock import ensure_utc, utcnow
from gatekeeper.core.config import settings
from gatekeeper.core.exceptions import (
    Forbidden,
    GatekeeperError,
    InternalError,
    InviteCodeNotFound,
    UnknownIdentity,
    ValidationError,
)
from gatekeeper.models import InviteCode
from gatekeeper.permissions.role_key import GLOBAL_CREATE_INVITE_KEY, RoleKeyLike
from gatekeeper.schemas.schemas import (
    CreatedInvite,
    CreateInviteRequest,
    InviteCodeLookup,
    InviteCodeOut,
    InviteCodePage,
    InviteValidation,
    ListInviteCodesRequest,
    RedemptionResult,
)
from gatekeeper.services.invite_code_store import InviteCodeStore
from gatekeeper.services.policy_engine import PolicyEngine

logger = logging.getLogger("gatekeeper")

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8

INVALID_CODE_MESSAGE = "Invalid invite code"
REVOKED_MESSAGE = "Invite code has been revoked"
USED_MESSAGE = "Invite code is already used"
EXPIRED_MESSAGE = "Invite code has expired"

M = TypeVar("M", bound=BaseModel)


def generate_code() -> str:
    """Random 8-character code from A-Z and 0-9, e.g. ``XK9P2M4J``."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def _validated(model: Type[M], **data) -> M:
    try:
        return model(**data)
    except PydanticValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(details or "Invalid input") from exc


def _unusable_reason(invite: Optional[InviteCode], now: datetime) -> Optional[str]:
    if invite is None:
        return INVALID_CODE_MESSAGE
    if invite.revoked_at is not None:
        return REVOKED_MESSAGE
    if invite.used_by is not None:
        return USED_MESSAGE
    if ensure_utc(invite.expires_at) < now:
        return EXPIRED_MESSAGE
    return None


class InviteCodeService:
    """Business rules for invite codes.

    Managing codes requires ``global:create-invite`` after hierarchy expansion
    of the caller's roles, so ``global:admin`` qualifies too. Redemption is
    open to any existing identity holding a valid code.
    """

    def __init__(
        self,
        invite_store: InviteCodeStore,
        policy_engine: PolicyEngine,
        clock: Callable[[], datetime] = utcnow,
        code_factory: Callable[[], str] = generate_code,
        max_attempts: Optional[int] = None,
        default_expiration_hours: Optional[float] = None,
    ):
        self.invite_store = invite_store
        self.policy_engine = policy_engine
        self.clock = clock
        self.code_factory = code_factory
        self.max_attempts = max_attempts or settings.INVITE_CODE_MAX_ATTEMPTS
        self.default_expiration_hours = (
            default_expiration_hours or settings.INVITE_CODE_EXPIRATION_HOURS
        )

    def _verify_invite_management_permission(self, identity: str) -> None:
        if not self.policy_engine.has_implied_role(identity, GLOBAL_CREATE_INVITE_KEY):
            raise Forbidden("You do not have permission to manage invite codes")

    # ==================== CREATE ====================

    def create_invite(
        self,
        admin: str,
        role_keys: Iterable[RoleKeyLike],
        expires_in_hours: Optional[float] = None,
    ) -> CreatedInvite:
        """Mint a new code for ``role_keys``. Duplicate keys are stored once."""
        self._verify_invite_management_permission(admin)
        request = _validated(
            CreateInviteRequest,
            role_keys=[str(k) for k in role_keys],
            expires_in_hours=expires_in_hours,
        )

        hours = request.expires_in_hours or self.default_expiration_hours
        expires_at = self.clock() + timedelta(hours=hours)

        invite = None
        for attempt in range(1, self.max_attempts + 1):
            code = self.code_factory()
            if self.invite_store.get_by_code(code) is not None:
                logger.debug("Invite code collision on attempt %s", attempt)
                continue
            invite = self.invite_store.insert(code, request.role_keys, admin, expires_at)
            if invite is not None:
                break
        if invite is None:
            logger.error("Failed to generate unique invite code after %s attempts", self.max_attempts)
            raise InternalError("Failed to generate unique invite code")

        logger.info(
            "Admin %s created invite code %s with %s roles, expires at %s",
            admin, invite.code, len(request.role_keys), expires_at,
        )
        return CreatedInvite(
            code_id=invite.code_id,
            code=invite.code,
            role_keys=list(invite.role_keys),
            expires_at=expires_at,
        )

    # ==================== VALIDATE / REDEEM ====================

    def _lookup(self, code: str) -> Tuple[Optional[InviteCode], Optional[str]]:
        lookup = _validated(InviteCodeLookup, code=code)
        invite = self.invite_store.get_by_code(lookup.code)
        return invite, _unusable_reason(invite, self.clock())

    def validate_invite_code(self, code: str) -> InviteValidation:
        """Check whether ``code`` can be redeemed right now.

        The role keys are returned exactly as stored, without expansion.
        """
        invite, reason = self._lookup(code)
        if reason is not None:
            return InviteValidation(is_valid=False, message=reason)
        return InviteValidation(is_valid=True, role_keys=list(invite.role_keys))

    def use_invite_and_assign_roles(self, code: str, identity: str) -> RedemptionResult:
        """Redeem ``code`` for ``identity`` and grant its roles.

        Only one concurrent redemption of a code can pass the mark-used step;
        every other one fails with ``ValidationError``. Individual grant
        failures are reported in ``failed_roles`` without undoing the rest.
        """
        invite, reason = self._lookup(code)
        if reason is not None:
            raise ValidationError(reason)
        if not self.policy_engine.identity_exists(identity):
            raise UnknownIdentity(identity)

        if not self.invite_store.mark_used(invite.code_id, identity, self.clock()):
            latest = self.invite_store.get_by_id(invite.code_id)
            raise ValidationError(_unusable_reason(latest, self.clock()) or USED_MESSAGE)

        result = RedemptionResult()
        for role_key in invite.role_keys:
            try:
                granted = self.policy_engine.grant(invite.created_by, identity, role_key)
            except GatekeeperError as exc:
                logger.warning("Failed to grant %s to %s: %s", role_key, identity, exc.message)
                granted = False
            if granted:
                result.assigned_roles.append(role_key)
            else:
                result.failed_roles.append(role_key)

        logger.info(
            "User %s used invite code %s, assigned %s/%s roles",
            identity, invite.code, len(result.assigned_roles), len(invite.role_keys),
        )
        return result

    # ==================== MANAGE ====================

    def revoke_invite(self, admin: str, code_id: int) -> None:
        """Revoke an active or expired code."""
        self._verify_invite_management_permission(admin)
        invite = self.invite_store.get_by_id(code_id)
        if invite is None:
            raise InviteCodeNotFound(code_id)
        self._check_revocable(invite)

        if not self.invite_store.set_revoked(code_id, admin, self.clock()):
            # Used or revoked by someone else since the read above.
            latest = self.invite_store.get_by_id(code_id)
            if latest is None:
                raise InviteCodeNotFound(code_id)
            self._check_revocable(latest)
            raise ValidationError("Invite code can no longer be revoked")
        logger.info("Admin %s revoked invite code %s", admin, code_id)

    @staticmethod
    def _check_revocable(invite: InviteCode) -> None:
        if invite.used_by is not None:
            raise ValidationError("Cannot revoke an invite code that has already been used")
        if invite.revoked_at is not None:
            raise ValidationError("Invite code is already revoked")

    def list_invite_codes(
        self,
        admin: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> InviteCodePage:
        """One page of codes, newest first, optionally filtered by derived status."""
        self._verify_invite_management_permission(admin)
        request = _validated(ListInviteCodesRequest, status=status, limit=limit, offset=offset)

        now = self.clock()
        rows, total = self.invite_store.list(request.status, request.limit, request.offset, now)
        return InviteCodePage(
            data=[InviteCodeOut.from_model(row, now) for row in rows],
            total_count=total,
            has_more=request.offset + request.limit < total,
            has_previous=request.offset > 0,
        )

    def purge_expired(self, admin: str) -> int:
        """Delete codes that expired unused and unrevoked."""
        self._verify_invite_management_permission(admin)
        deleted = self.invite_store.delete_expired(self.clock())
        logger.info("Admin %s purged %s expired invite codes", admin, deleted)
        return deleted
