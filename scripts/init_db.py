import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from packages import db


def main() -> None:
    path = db.resolve_path()
    conn = db.get_conn(path)
    try:
        db.ensure_schema(conn)
    finally:
        conn.close()
    print(f"Initialized {path}")


if __name__ == "__main__":
    main()
