"""Privilege lookup for the acting user."""

import logging
from typing import Optional
from sqlalchemy import text

from freight_assistant.infra.database import get_db_session

logger = logging.getLogger(__name__)


class PrivilegeService:
    """Answers whether a user may see restricted financial fields."""

    def _lookup(self, user_id: str) -> bool:
        with get_db_session() as session:
            row = session.execute(
                text("""
                    SELECT EXISTS (
                        SELECT 1 FROM user_roles
                        WHERE user_id = CAST(:user_id AS uuid) AND user_role = 'admin'
                    ) AS is_admin
                """),
                {"user_id": user_id},
            ).fetchone()
        return bool(row and row.is_admin)

    def is_privileged(self, user_id: Optional[str]) -> bool:
        """
        Return True only for users holding the admin role.

        Lookup failures are treated as non-privileged.
        """
        if not user_id:
            return False
        try:
            return self._lookup(user_id)
        except Exception as e:
            logger.warning(
                f"Privilege lookup failed, treating user as non-privileged: {e}",
                extra={"user_id": user_id},
            )
            return False


privilege_service = PrivilegeService()
