from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from campus_sos.domain.models import Profile
from campus_sos.infra.db import open_session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfileSnapshot:
    full_name: str | None = None
    roll_number: str | None = None


class ProfileService:
    """Read-only, best-effort lookup of display name and roll number."""

    def _session(self) -> Session:
        return open_session()

    def lookup(self, user_id: str) -> ProfileSnapshot:
        try:
            with self._session() as session:
                row = session.get(Profile, user_id)
        except SQLAlchemyError:
            logger.warning("profile lookup failed", extra={"user_id": user_id}, exc_info=True)
            return ProfileSnapshot()
        if row is None:
            return ProfileSnapshot()
        full_name = row.full_name.strip() if row.full_name and row.full_name.strip() else None
        roll_number = row.roll_number.strip() if row.roll_number and row.roll_number.strip() else None
        return ProfileSnapshot(full_name=full_name, roll_number=roll_number)
