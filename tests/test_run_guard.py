from datetime import date, datetime, timedelta
import json
from pathlib import Path

import pytest

from changereport.errors import AlreadyRunningError
from changereport.run_guard import RunGuard


DAY = date(2024, 1, 15)
START = datetime(2024, 1, 15, 6, 0)


def test_second_acquire_within_hour_is_refused(tmp_path: Path) -> None:
    guard = RunGuard(tmp_path)

    path = guard.acquire(DAY, now=START)

    with pytest.raises(AlreadyRunningError, match="--force"):
        guard.acquire(DAY, now=START + timedelta(minutes=59))
    lease = json.loads(path.read_text(encoding="utf-8"))
    assert lease["acquired_at"] == START.isoformat()
    assert lease["expires_at"] == (START + timedelta(hours=1)).isoformat()


def test_expired_lease_is_taken_over(tmp_path: Path) -> None:
    guard = RunGuard(tmp_path)
    guard.acquire(DAY, now=START)

    path = guard.acquire(DAY, now=START + timedelta(hours=1, seconds=1))

    lease = json.loads(path.read_text(encoding="utf-8"))
    assert lease["acquired_at"] == (START + timedelta(hours=1, seconds=1)).isoformat()


def test_force_refreshes_lease(tmp_path: Path) -> None:
    guard = RunGuard(tmp_path)
    guard.acquire(DAY, now=START)

    path = guard.acquire(DAY, force=True, now=START + timedelta(minutes=5))

    lease = json.loads(path.read_text(encoding="utf-8"))
    assert lease["acquired_at"] == (START + timedelta(minutes=5)).isoformat()


def test_leases_are_per_report_date(tmp_path: Path) -> None:
    guard = RunGuard(tmp_path)
    guard.acquire(DAY, now=START)

    guard.acquire(DAY + timedelta(days=1), now=START)

    assert sorted(p.name for p in tmp_path.glob("*.lease")) == [
        "change-report-2024-01-15.lease",
        "change-report-2024-01-16.lease",
    ]


def test_unreadable_lease_is_replaced(tmp_path: Path) -> None:
    guard = RunGuard(tmp_path)
    guard.lease_path(DAY).write_text("garbage", encoding="utf-8")

    path = guard.acquire(DAY, now=START)

    assert json.loads(path.read_text(encoding="utf-8"))["acquired_at"] == START.isoformat()
