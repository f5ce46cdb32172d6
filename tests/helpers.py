from datetime import date, datetime
import smtplib

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from changereport.config import EmailSettings
from changereport.db_models import Base, ChangeRequest


REPORT_DATE = date(2024, 1, 15)
FIXED_NOW = datetime(2024, 1, 15, 6, 0, 0)


class FakeSMTP:
    def __init__(self, recorder: "SmtpRecorder", settings: EmailSettings) -> None:
        self.recorder = recorder
        self.settings = settings
        self.tls = False
        self.closed = False

    def __enter__(self) -> "FakeSMTP":
        return self

    def __exit__(self, *exc_info) -> bool:
        self.closed = True
        return False

    def starttls(self, context=None) -> None:
        self.tls = True

    def login(self, user: str, password: str) -> None:
        self.recorder.logins.append((user, password))

    def send_message(self, message, from_addr=None, to_addrs=None) -> dict:
        if self.recorder.failures:
            raise self.recorder.failures.pop(0)
        if self.recorder.always_fail is not None:
            raise self.recorder.always_fail
        self.recorder.sent.append(message)
        return {}


class SmtpRecorder:
    """SMTP factory that records connections and delivered messages."""

    def __init__(self, failures: list[Exception] | None = None, always_fail: Exception | None = None) -> None:
        self.failures = list(failures or [])
        self.always_fail = always_fail
        self.connections: list[FakeSMTP] = []
        self.sent: list = []
        self.logins: list[tuple[str, str]] = []

    def __call__(self, settings: EmailSettings) -> FakeSMTP:
        connection = FakeSMTP(self, settings)
        self.connections.append(connection)
        return connection


def transient_error() -> Exception:
    return smtplib.SMTPServerDisconnected("Connection unexpectedly closed")


def seed_changes(database_url: str, rows: list[dict[str, object]]) -> None:
    engine = create_engine(database_url, future=True)
    Base.metadata.create_all(engine)
    with Session(engine) as db:
        db.add_all(ChangeRequest(**row) for row in rows)
        db.commit()
    engine.dispose()


def change_row(change_id: str, priority: str, start: datetime | None, end: datetime | None = None, **fields) -> dict:
    row = {
        "id": change_id,
        "priority": priority,
        "type": "Normal",
        "configuration_item": f"ci-{change_id.lower()}",
        "short_description": f"Change {change_id}",
        "assignment_group": "Infrastructure",
        "assigned_to": "J. Operator",
        "actual_start_date": start,
        "actual_end_date": end,
    }
    row.update(fields)
    return row


def scenario_rows() -> list[dict[str, object]]:
    return [
        change_row("CHG0003", "High", datetime(2024, 1, 15, 8, 0)),
        change_row("CHG0002", "Critical", datetime(2024, 1, 15, 11, 30), datetime(2024, 1, 15, 12, 0)),
        change_row("CHG0001", "Critical", datetime(2024, 1, 15, 9, 15)),
        change_row("CHG0004", "Medium", datetime(2024, 1, 15, 10, 0)),
        change_row("CHG0005", "Critical", datetime(2024, 1, 16, 0, 0)),
        change_row("CHG0006", "High", None),
    ]
