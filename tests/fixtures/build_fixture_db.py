from contextlib import closing
from datetime import datetime, time, timedelta, timezone
from pathlib import Path

from packages import db

USER_ID = "runner-1"
OTHER_USER_ID = "runner-2"


def today_midnight_utc() -> datetime:
    return datetime.combine(datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc)


def insert_activity(conn, user_id: str, when: datetime, distance_m: float, duration_s=None) -> None:
    conn.execute(
        "INSERT INTO activity_entries(user_id, created_at, distance_m, duration_s) VALUES(?,?,?,?)",
        (user_id, db.to_db_time(when), distance_m, duration_s),
    )


def insert_membership(conn, user_id: str, membership_id: str, challenge_id: str, start: datetime, end: datetime,
                      joined_at: datetime, target_m=None, completed=False, progress=0.0) -> None:
    conn.execute(
        """
        INSERT INTO challenge_memberships(
          id, user_id, challenge_id, title, description, start_date, end_date,
          target_distance_m, is_completed, progress, joined_at
        ) VALUES(?,?,?,?,?,?,?,?,?,?,?)
        """,
        (
            membership_id,
            user_id,
            challenge_id,
            f"Challenge {challenge_id}",
            "",
            db.to_db_time(start),
            db.to_db_time(end),
            target_m,
            int(completed),
            progress,
            db.to_db_time(joined_at),
        ),
    )


def build_fixture_db(db_path: Path) -> None:
    """Two users; runner-1 has 9 km this week and two joined challenges."""
    if db_path.exists():
        db_path.unlink()
    midnight = today_midnight_utc()
    # Today's entries sit between midnight and now so none of them is future-dated.
    elapsed = datetime.now(timezone.utc) - midnight
    with closing(db.get_conn(db_path)) as conn:
        db.ensure_schema(conn)

        # Today 3 km + 2 km, two days ago 4 km, ten days ago 7 km (outside the week).
        insert_activity(conn, USER_ID, midnight + elapsed / 3, 3000.0, 1200)
        insert_activity(conn, USER_ID, midnight + elapsed / 2, 2000.0, 800)
        insert_activity(conn, USER_ID, midnight - timedelta(days=2) + timedelta(hours=8), 4000.0, 1500)
        insert_activity(conn, USER_ID, midnight - timedelta(days=10), 7000.0, 2600)
        insert_activity(conn, OTHER_USER_ID, midnight + elapsed / 3, 10000.0, 3600)

        insert_membership(
            conn,
            USER_ID,
            "m-active",
            "c-month",
            start=midnight - timedelta(days=14),
            end=midnight + timedelta(days=14),
            joined_at=midnight - timedelta(days=1),
            target_m=50000.0,
        )
        insert_membership(
            conn,
            USER_ID,
            "m-done",
            "c-old",
            start=midnight - timedelta(days=60),
            end=midnight - timedelta(days=30),
            joined_at=midnight - timedelta(days=60),
            target_m=10000.0,
            completed=True,
            progress=10000.0,
        )
        conn.commit()
