import sys
from collections import defaultdict
from pathlib import Path

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from finance_tracker.config import settings
from finance_tracker.core.logging import configure_logging
from finance_tracker.database import engine
from finance_tracker.models.category import Category
from finance_tracker.services.categories import CategoryService
from sqlmodel import Session, select


def main():
    configure_logging(settings.log_level, settings.log_file)
    print(f"Database URL: {settings.database_url}")

    with Session(engine) as session:
        service = CategoryService(session)
        categories = session.exec(select(Category)).all()
        by_user = defaultdict(list)
        for c in categories:
            by_user[c.user_id].append(c)

        repaired = 0
        for user_id, rows in by_user.items():
            # orphaned or foreign parents fall back to root before the walk
            for c in rows:
                if c.parent_id is not None:
                    before = c.parent_id
                    service.sync_hierarchy(c)
                    if c.parent_id != before:
                        repaired += 1
                        session.add(c)
            session.flush()

            roots = [c for c in rows if c.parent_id is None]
            for root in roots:
                root.path = []
                root.level = 0
                session.add(root)
                service.rebuild_subtree(root)
            print(f"User {user_id}: {len(rows)} categories, {len(roots)} roots")

        broken = []
        for rows in by_user.values():
            broken.extend(service.break_cycles(rows))
        for c in broken:
            print(f"Category {c.id} ({c.name}) closed a parent cycle, moved to root")

        session.commit()
        print(f"Done. {repaired} invalid parents reset, {len(broken)} cycles broken.")


if __name__ == "__main__":
    main()
