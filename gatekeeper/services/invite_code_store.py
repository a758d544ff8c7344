"""Invite code store: CRUD and atomic state transitions for invite codes."""

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from gatekeeper.db.session import session_scope
from gatekeeper.models import InviteCode, InviteCodeStatus

logger = logging.getLogger("gatekeeper")


def status_condition(status: Optional[InviteCodeStatus], now: datetime):
    """SQL filter matching the derived status rules of ``InviteCode.status_at``."""
    if status is None:
        return None
    status = InviteCodeStatus(status)
    if status == InviteCodeStatus.active:
        return and_(
            InviteCode.revoked_at.is_(None),
            InviteCode.used_by.is_(None),
            InviteCode.expires_at >= now,
        )
    if status == InviteCodeStatus.used:
        return and_(InviteCode.revoked_at.is_(None), InviteCode.used_by.is_not(None))
    if status == InviteCodeStatus.expired:
        return and_(
            InviteCode.revoked_at.is_(None),
            InviteCode.used_by.is_(None),
            InviteCode.expires_at < now,
        )
    return InviteCode.revoked_at.is_not(None)


class InviteCodeStore:
    """Database access for the invite_codes table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def insert(
        self,
        code: str,
        role_keys: Sequence[str],
        created_by: str,
        expires_at: datetime,
    ) -> Optional[InviteCode]:
        """Persist a new active code. Returns None if ``code`` is already taken."""
        with session_scope(self._session_factory, "insert_invite_code") as db:
            invite = InviteCode(
                code=code,
                role_keys=list(role_keys),
                created_by=created_by,
                expires_at=expires_at,
            )
            db.add(invite)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning("Invite code %s collided on insert", code)
                return None
        logger.info("Invite code created: %s by %s, expires at %s", code, created_by, expires_at)
        return invite

    def get_by_code(self, code: str) -> Optional[InviteCode]:
        with session_scope(self._session_factory, "get_invite_code_by_code") as db:
            return db.execute(
                select(InviteCode).where(InviteCode.code == code)
            ).scalar_one_or_none()

    def get_by_id(self, code_id: int) -> Optional[InviteCode]:
        with session_scope(self._session_factory, "get_invite_code_by_id") as db:
            return db.get(InviteCode, code_id)

    def mark_used(self, code_id: int, identity: str, now: datetime) -> bool:
        """Atomically move an active code to used.

        Only one caller can win: the update only matches while the code is
        unused, unrevoked and unexpired.
        """
        with session_scope(self._session_factory, "mark_invite_code_used") as db:
            result = db.execute(
                update(InviteCode)
                .where(
                    InviteCode.code_id == code_id,
                    InviteCode.used_by.is_(None),
                    InviteCode.revoked_at.is_(None),
                    InviteCode.expires_at >= now,
                )
                .values(used_by=identity, used_at=now)
            )
            db.commit()
        won = result.rowcount == 1
        if won:
            logger.info("Invite code %s marked as used by %s", code_id, identity)
        return won

    def set_revoked(self, code_id: int, revoked_by: str, now: datetime) -> bool:
        """Atomically revoke a code that is neither used nor revoked."""
        with session_scope(self._session_factory, "revoke_invite_code") as db:
            result = db.execute(
                update(InviteCode)
                .where(
                    InviteCode.code_id == code_id,
                    InviteCode.used_by.is_(None),
                    InviteCode.revoked_at.is_(None),
                )
                .values(revoked_by=revoked_by, revoked_at=now)
            )
            db.commit()
        revoked = result.rowcount == 1
        if revoked:
            logger.info("Invite code %s revoked by %s", code_id, revoked_by)
        return revoked

    def list(
        self,
        status: Optional[InviteCodeStatus],
        limit: int,
        offset: int,
        now: datetime,
    ) -> Tuple[List[InviteCode], int]:
        """Return one page of codes (newest first) and the total match count."""
        condition = status_condition(status, now)
        with session_scope(self._session_factory, "list_invite_codes") as db:
            count_query = select(func.count()).select_from(InviteCode)
            data_query = select(InviteCode).order_by(
                InviteCode.created_at.desc(), InviteCode.code_id.desc()
            )
            if condition is not None:
                count_query = count_query.where(condition)
                data_query = data_query.where(condition)

            total = db.execute(count_query).scalar_one()
            rows = db.execute(data_query.limit(limit).offset(offset)).scalars().all()
        return list(rows), total

    def delete_expired(self, now: datetime) -> int:
        """Delete codes that expired without being used or revoked."""
        with session_scope(self._session_factory, "delete_expired_invite_codes") as db:
            result = db.execute(
                delete(InviteCode).where(
                    InviteCode.expires_at < now,
                    InviteCode.used_by.is_(None),
                    InviteCode.revoked_at.is_(None),
                )
            )
            db.commit()
        logger.info("Deleted %s expired invite codes", result.rowcount)
        return result.rowcount
