from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
import logging
import re

from sqlalchemy import case, select
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from changereport.db_models import ChangeRequest
from changereport.errors import AuthenticationError, DatabaseError
from changereport.schemas import NOT_SET, ChangeRecord, Priority


logger = logging.getLogger(__name__)

_AUTH_SQLSTATES = ("28000", "28P01")
_AUTH_MESSAGE = re.compile(r"login failed|password authentication failed|access denied|permission denied", re.IGNORECASE)

PRIORITY_RANK = case(
    (ChangeRequest.priority == Priority.CRITICAL.value, 1),
    (ChangeRequest.priority == Priority.HIGH.value, 2),
    else_=3,
)


def _wrap_error(exc: SQLAlchemyError, action: str) -> DatabaseError:
    detail = str(getattr(exc, "orig", None) or exc)
    if isinstance(exc, DBAPIError):
        sqlstate = getattr(exc.orig, "sqlstate", None) or (exc.orig.args[0] if exc.orig and exc.orig.args else "")
        if str(sqlstate) in _AUTH_SQLSTATES or _AUTH_MESSAGE.search(detail):
            return AuthenticationError(f"{action} was rejected: {detail}")
    return DatabaseError(f"{action} failed: {detail}")


@contextmanager
def open_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def check_connectivity(session_factory: sessionmaker[Session]) -> None:
    try:
        with open_session(session_factory) as db:
            db.execute(select(1)).scalar_one()
    except SQLAlchemyError as exc:
        raise _wrap_error(exc, "database connectivity check") from exc
    logger.debug("database connectivity check passed")


def build_change_query(report_date: date):
    day_start = datetime.combine(report_date, time.min)
    next_day_start = day_start + timedelta(days=1)
    return (
        select(ChangeRequest)
        .where(
            ChangeRequest.priority.in_([Priority.CRITICAL.value, Priority.HIGH.value]),
            ChangeRequest.actual_start_date >= day_start,
            ChangeRequest.actual_start_date < next_day_start,
        )
        .order_by(PRIORITY_RANK, ChangeRequest.actual_start_date.asc(), ChangeRequest.id.asc())
    )


def to_change_record(row: ChangeRequest) -> ChangeRecord:
    return ChangeRecord(
        id=str(row.id),
        priority=Priority(row.priority.strip().capitalize()),
        type=row.type or "",
        configuration_item=row.configuration_item or "",
        short_description=row.short_description or "",
        assignment_group=row.assignment_group or "",
        assigned_to=row.assigned_to or "",
        actual_start_date=row.actual_start_date or NOT_SET,
        actual_end_date=row.actual_end_date or NOT_SET,
    )


def fetch_changes(db: Session, report_date: date) -> list[ChangeRecord]:
    try:
        rows = db.execute(build_change_query(report_date)).scalars().all()
    except SQLAlchemyError as exc:
        raise _wrap_error(exc, "change query") from exc

    records = [to_change_record(row) for row in rows]
    logger.info(
        "fetched %d change records for %s",
        len(records),
        report_date.isoformat(),
        extra={"report_date": report_date.isoformat(), "change_count": len(records)},
    )
    return records
