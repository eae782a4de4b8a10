from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import closing
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from packages import db
from packages.feeds import Feed
from packages.models import ActivityEntry

from .live import LiveQueries

logger = logging.getLogger("fitness.stores")


class ActivityStore(ABC):
    """Time series of recorded activity entries, owned outside the profile core."""

    @abstractmethod
    def watch_activity(
        self, user_id: str, start: datetime, end: Optional[datetime] = None
    ) -> Feed[List[ActivityEntry]]:
        """Live feed of every entry with ``start <= timestamp`` (and ``<= end`` when given)."""

    @abstractmethod
    async def fetch_activity(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[ActivityEntry]:
        """Bounded one-shot range query, inclusive at both ends."""

    @abstractmethod
    async def add_activity(self, entry: ActivityEntry) -> ActivityEntry:
        ...


def _row_to_entry(row) -> ActivityEntry:
    return ActivityEntry(
        id=row[0],
        user_id=row[1],
        timestamp=db.from_db_time(row[2]),
        distance_meters=float(row[3]),
        duration_seconds=row[4],
    )


class SqliteActivityStore(ActivityStore):
    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db.resolve_path(db_path)
        self.live = LiveQueries("activity")
        with closing(db.get_conn(self.db_path)) as conn:
            db.ensure_schema(conn)

    def _query(self, user_id: str, start: datetime, end: Optional[datetime]) -> List[ActivityEntry]:
        sql = (
            "SELECT id, user_id, created_at, distance_m, duration_s FROM activity_entries "
            "WHERE user_id = ? AND created_at >= ?"
        )
        params = [user_id, db.to_db_time(start)]
        if end is not None:
            sql += " AND created_at <= ?"
            params.append(db.to_db_time(end))
        sql += " ORDER BY created_at"
        with closing(db.get_conn(self.db_path)) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_entry(row) for row in rows]

    def watch_activity(self, user_id, start, end=None):
        return self.live.feed(
            user_id,
            lambda: self._query(user_id, start, end),
            name=f"activity:{user_id}",
        )

    async def fetch_activity(self, user_id, start, end):
        return await asyncio.to_thread(self._query, user_id, start, end)

    def _insert(self, entry: ActivityEntry) -> ActivityEntry:
        with closing(db.get_conn(self.db_path)) as conn:
            cur = conn.execute(
                "INSERT INTO activity_entries(user_id, created_at, distance_m, duration_s) "
                "VALUES(?, ?, ?, ?)",
                (entry.user_id, db.to_db_time(entry.timestamp), entry.distance_meters, entry.duration_seconds),
            )
            conn.commit()
            return replace(entry, id=cur.lastrowid)

    async def add_activity(self, entry):
        saved = await asyncio.to_thread(self._insert, entry)
        logger.info(
            "activity saved id=%s user=%s distance_km=%.2f",
            saved.id,
            saved.user_id,
            saved.distance_km,
        )
        self.live.notify(entry.user_id)
        return saved
