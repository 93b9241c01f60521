# ============================================================================
# ACTIVITY REPOSITORY
# ============================================================================
# STATUS: Core - Append-only audit writes
# PURPOSE: Database access for the activities table
# CREATED: 19 OCT 2026
# ============================================================================
"""
Activity Repository

Append-only. The engine writes activities and never reads them back;
list_recent exists for operators and tests.
"""

import logging
from typing import List, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.models import Activity
from .database import TABLE_ACTIVITIES

logger = logging.getLogger(__name__)


class ActivityRepository:
    """Repository for Activity entities."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def create(self, activity: Activity) -> Activity:
        """
        Insert an activity.

        Returns:
            Activity with activity_id populated
        """
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    customer_id, agent, action, event_type, severity,
                    details, created_at
                ) VALUES (
                    %(customer_id)s, %(agent)s, %(action)s, %(event_type)s,
                    %(severity)s, %(details)s, %(created_at)s
                )
                RETURNING activity_id
                """).format(TABLE_ACTIVITIES),
                {
                    "customer_id": activity.customer_id,
                    "agent": activity.agent,
                    "action": activity.action.value,
                    "event_type": activity.event_type.value,
                    "severity": activity.severity.value,
                    "details": Json(activity.details),
                    "created_at": activity.created_at,
                },
            )
            row = await result.fetchone()
            activity.activity_id = row["activity_id"]
            return activity

    async def list_recent(
        self,
        customer_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Activity]:
        """Newest activities first, optionally for one customer."""
        where = sql.SQL("")
        params: list = []
        if customer_id:
            where = sql.SQL("WHERE customer_id = %s")
            params.append(customer_id)
        params.append(limit)

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {} {}
                ORDER BY created_at DESC
                LIMIT %s
                """).format(TABLE_ACTIVITIES, where),
                params,
            )
            rows = await result.fetchall()
            return [Activity.model_validate(row) for row in rows]
