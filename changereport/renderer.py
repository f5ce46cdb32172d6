"""HTML documents and subject lines for the daily change report.

Rendering is pure: the only varying input is ``generated_at``, which fills
the footer and defaults to the current time when not supplied.
"""

from collections.abc import Sequence
from datetime import date, datetime

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape

from changereport.errors import ErrorCategory
from changereport.schemas import ChangeRecord, NotSet, Priority


DATE_FORMAT = "%Y-%m-%d"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"
NOT_SET_TEXT = "Not set"
SUBJECT_PREFIX = "Change Report"

REMEDIATION_HINTS = {
    ErrorCategory.CONFIGURATION: [
        "Check that the configuration file exists and is valid JSON.",
        "Re-encrypt passwords with the encrypt-secret command under the account that runs the report.",
    ],
    ErrorCategory.DATABASE: [
        "Verify the database server is reachable from this host.",
        "Check the server and database names in the configuration.",
    ],
    ErrorCategory.AUTHENTICATION: [
        "Verify the database account and password are still valid.",
        "Confirm the account has read access to the change table.",
    ],
    ErrorCategory.EMAIL: [
        "Verify the SMTP server, port and TLS settings.",
        "An undelivered copy of the report was written to the log directory.",
    ],
    ErrorCategory.GENERAL: [
        "Review the log file for the full traceback.",
    ],
}


def format_timestamp(value: datetime | NotSet) -> str:
    if isinstance(value, NotSet) or value is None:
        return NOT_SET_TEXT
    return value.strftime(TIMESTAMP_FORMAT)


def _environment() -> Environment:
    env = Environment(
        loader=PackageLoader("changereport", "templates"),
        autoescape=select_autoescape(["html", "j2"]),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["timestamp"] = format_timestamp
    return env


_env = _environment()


def build_subject(report_date: date, count: int) -> str:
    day = report_date.strftime(DATE_FORMAT)
    if count == 0:
        return f"{SUBJECT_PREFIX} {day}: No Critical/High Priority Changes"
    if count == 1:
        return f"{SUBJECT_PREFIX} {day}: 1 Critical/High Priority Change"
    return f"{SUBJECT_PREFIX} {day}: {count} Critical/High Priority Changes"


def _footer_time(generated_at: datetime | None) -> str:
    return (generated_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")


def render_report(
    records: Sequence[ChangeRecord],
    report_date: date,
    generated_at: datetime | None = None,
) -> str:
    # Records arrive ordered by priority then start date; grouping keeps that order.
    groups = [
        (priority, [record for record in records if record.priority is priority])
        for priority in (Priority.CRITICAL, Priority.HIGH)
    ]
    return _env.get_template("report.html.j2").render(
        report_date=report_date.strftime(DATE_FORMAT),
        groups=[(priority.value, items) for priority, items in groups if items],
        total=len(records),
        counts={priority.value: len(items) for priority, items in groups},
        generated_at=_footer_time(generated_at),
    )


def render_no_changes(report_date: date, generated_at: datetime | None = None) -> str:
    return _env.get_template("no_changes.html.j2").render(
        report_date=report_date.strftime(DATE_FORMAT),
        generated_at=_footer_time(generated_at),
    )


def build_error_subject(report_date: date, category: ErrorCategory) -> str:
    return f"{SUBJECT_PREFIX} {report_date.strftime(DATE_FORMAT)}: FAILED ({category.value} error)"


def render_error(
    category: ErrorCategory,
    message: str,
    report_date: date,
    generated_at: datetime | None = None,
) -> str:
    return _env.get_template("error.html.j2").render(
        report_date=report_date.strftime(DATE_FORMAT),
        category=category.value,
        message=message,
        hints=REMEDIATION_HINTS.get(category, REMEDIATION_HINTS[ErrorCategory.GENERAL]),
        generated_at=_footer_time(generated_at),
    )
