from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path
from typing import List, Optional

from packages import db
from packages.feeds import Feed
from packages.models import ChallengeMembership

from .live import LiveQueries

logger = logging.getLogger("fitness.stores")


class MembershipStore(ABC):
    """Challenges a user has joined, owned outside the profile core."""

    @abstractmethod
    def watch_memberships(self, user_id: str) -> Feed[List[ChallengeMembership]]:
        """Live feed of the full membership list, most recently joined first."""

    @abstractmethod
    async def add_membership(self, user_id: str, membership: ChallengeMembership) -> None:
        ...

    @abstractmethod
    async def mark_completed(self, user_id: str, membership_id: str, progress: float) -> bool:
        ...


_COLUMNS = (
    "id, challenge_id, title, description, start_date, end_date, "
    "target_distance_m, is_completed, progress, joined_at"
)


def _row_to_membership(row) -> ChallengeMembership:
    return ChallengeMembership(
        id=row[0],
        challenge_id=row[1],
        title=row[2],
        description=row[3] or "",
        start_date=db.from_db_time(row[4]),
        end_date=db.from_db_time(row[5]),
        target_distance=row[6],
        is_completed=bool(row[7]),
        stored_progress=float(row[8] or 0),
        joined_at=db.from_db_time(row[9]),
    )


class SqliteMembershipStore(MembershipStore):
    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db.resolve_path(db_path)
        self.live = LiveQueries("memberships")
        with closing(db.get_conn(self.db_path)) as conn:
            db.ensure_schema(conn)

    def _query(self, user_id: str) -> List[ChallengeMembership]:
        with closing(db.get_conn(self.db_path)) as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM challenge_memberships WHERE user_id = ? "
                "ORDER BY joined_at DESC",
                (user_id,),
            ).fetchall()
        return [_row_to_membership(row) for row in rows]

    def watch_memberships(self, user_id):
        return self.live.feed(user_id, lambda: self._query(user_id), name=f"memberships:{user_id}")

    def _upsert(self, user_id: str, membership: ChallengeMembership) -> None:
        with closing(db.get_conn(self.db_path)) as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO challenge_memberships(user_id, {_COLUMNS}) "
                "VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    user_id,
                    membership.id,
                    membership.challenge_id,
                    membership.title,
                    membership.description,
                    db.to_db_time(membership.start_date),
                    db.to_db_time(membership.end_date),
                    membership.target_distance,
                    int(membership.is_completed),
                    membership.stored_progress,
                    db.to_db_time(membership.joined_at),
                ),
            )
            conn.commit()

    async def add_membership(self, user_id, membership):
        await asyncio.to_thread(self._upsert, user_id, membership)
        logger.info("challenge joined user=%s challenge=%s", user_id, membership.challenge_id)
        self.live.notify(user_id)

    def _complete(self, user_id: str, membership_id: str, progress: float) -> bool:
        with closing(db.get_conn(self.db_path)) as conn:
            cur = conn.execute(
                "UPDATE challenge_memberships SET is_completed = 1, progress = ? "
                "WHERE user_id = ? AND id = ?",
                (progress, user_id, membership_id),
            )
            conn.commit()
            return cur.rowcount > 0

    async def mark_completed(self, user_id, membership_id, progress):
        updated = await asyncio.to_thread(self._complete, user_id, membership_id, progress)
        if updated:
            logger.info("challenge completed user=%s membership=%s", user_id, membership_id)
            self.live.notify(user_id)
        return updated
