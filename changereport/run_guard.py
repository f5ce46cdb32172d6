"""Lease file that keeps two report runs for the same day from overlapping.

The lease is left in place when a run ends, so any invocation for the same
report date inside the lease window is refused unless forced. Two processes
that both find an expired lease can still both take it over; with a daily
schedule that window is accepted.
"""

from datetime import date, datetime, timedelta
import json
import logging
import os
from pathlib import Path

from changereport.errors import AlreadyRunningError


logger = logging.getLogger(__name__)

LEASE_DURATION = timedelta(hours=1)


class RunGuard:
    def __init__(self, state_dir: Path, *, lease_duration: timedelta = LEASE_DURATION) -> None:
        self.state_dir = Path(state_dir)
        self.lease_duration = lease_duration

    def lease_path(self, report_date: date) -> Path:
        return self.state_dir / f"change-report-{report_date.isoformat()}.lease"

    def acquire(self, report_date: date, *, force: bool = False, now: datetime | None = None) -> Path:
        now = now or datetime.now()
        path = self.lease_path(report_date)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        payload = self._payload(now)

        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            pass
        else:
            with os.fdopen(fd, "w", encoding="utf-8") as outfile:
                outfile.write(payload)
            logger.debug("run lease acquired at %s", path)
            return path

        acquired_at = self._read_acquired_at(path)
        if not force and acquired_at is not None and now - acquired_at < self.lease_duration:
            raise AlreadyRunningError(
                f"a report run for {report_date.isoformat()} started at "
                f"{acquired_at.isoformat(timespec='seconds')}; use --force to run again"
            )

        if force:
            logger.info("forcing run despite existing lease %s", path)
        self._replace(path, payload)
        return path

    def _payload(self, now: datetime) -> str:
        return json.dumps(
            {
                "pid": os.getpid(),
                "acquired_at": now.isoformat(),
                "expires_at": (now + self.lease_duration).isoformat(),
            },
            sort_keys=True,
        )

    def _read_acquired_at(self, path: Path) -> datetime | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return datetime.fromisoformat(data["acquired_at"])
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("ignoring unreadable run lease %s: %s", path, exc)
            return None

    def _replace(self, path: Path, payload: str) -> None:
        tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, path)
