import argparse
import asyncio
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from packages import db
from packages.models import ChallengeMembership
from services.profile.service import build_profile_service


async def seed(user_id: str, days: int, distance_m: float, challenge: bool) -> None:
    service = build_profile_service()
    now = datetime.now(timezone.utc)
    try:
        for offset in range(days):
            await service.record_activity(user_id, distance_m, timestamp=now - timedelta(days=offset))
        if challenge:
            await service.join_challenge(
                user_id,
                ChallengeMembership(
                    id=uuid.uuid4().hex,
                    challenge_id="monthly-50k",
                    title="50 km this month",
                    description="Run 50 km within 30 days",
                    start_date=now - timedelta(days=days),
                    end_date=now + timedelta(days=30 - days),
                    joined_at=now,
                    target_distance=50000.0,
                ),
            )
        snapshot = await service.fetch_profile_once(user_id)
    finally:
        service.close()
    print(f"Weekly km: {list(zip(snapshot.weekly_activity.day_labels, snapshot.weekly_activity.day_totals_km))}")
    for item in snapshot.challenges:
        print(f"Challenge {item.membership.title}: {item.progress_label}")


def main():
    parser = argparse.ArgumentParser(description="Seed activity and a challenge for a user.")
    parser.add_argument("user_id")
    parser.add_argument("--days", type=int, default=5)
    parser.add_argument("--distance", type=float, default=5000.0, help="meters per day")
    parser.add_argument("--no-challenge", action="store_true", default=False)
    args = parser.parse_args()

    if not db.db_exists():
        raise SystemExit("DB not initialized. Run scripts/init_db.py first.")
    asyncio.run(seed(args.user_id, args.days, args.distance, not args.no_challenge))


if __name__ == "__main__":
    main()
