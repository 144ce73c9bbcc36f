"""Periodic job: release results of SCHEDULED exams whose release date has passed.

Run from cron or a scheduler, e.g. ``exam-grading-release-scheduled`` every few minutes.
"""

import logging

from sqlmodel import Session

from exam_grading.database import create_db_and_tables, engine
from exam_grading.services.submission_service import sweep_scheduled_releases

logger = logging.getLogger("exam_grading.sweep")


def main() -> int:
    create_db_and_tables()
    with Session(engine) as session:
        released = sweep_scheduled_releases(session)
    logger.info("Scheduled release sweep released %s submissions", released)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
