import json
from pathlib import Path

from sqlmodel import Session, SQLModel, create_engine, select

from shodh import config
from shodh.utils import setup_logging

logger = setup_logging(__name__)

SEED_FILE = Path(__file__).resolve().parent / "seed" / "demo_contest.json"


def make_engine(url: str = None):
    url = url or f"sqlite:///{config.DB_PATH}"
    return create_engine(url, echo=False, connect_args={"check_same_thread": False})


def init_db(engine):
    from shodh import models  # noqa: F401 (registers the tables)
    SQLModel.metadata.create_all(engine)


def seed_problems(engine, path: Path = SEED_FILE) -> int:
    """Insert or update the problems listed in a seed file. Returns how many were seen."""
    from shodh.models import Problem

    if not path.exists():
        logger.warning("%s not found, skipping problem seeding", path)
        return 0

    with open(path, "r") as f:
        data = json.load(f)

    problems = data.get("problems", [])
    with Session(engine) as session:
        for item in problems:
            existing = session.exec(select(Problem).where(Problem.id == item["id"])).first()
            if existing:
                existing.title = item["title"]
                existing.description = item.get("description", "")
                existing.test_cases = item.get("test_cases", [])
                existing.score = item.get("score", 100)
                session.add(existing)
            else:
                session.add(Problem(
                    id=item["id"],
                    contest_id=data["contest_id"],
                    title=item["title"],
                    description=item.get("description", ""),
                    test_cases=item.get("test_cases", []),
                    score=item.get("score", 100),
                ))
        session.commit()
    logger.info("Seeded %d problems for contest %s", len(problems), data["contest_id"])
    return len(problems)
