import pytest

from changereport import scheduler
from changereport.runner import ReportRunner


class FakeScheduler:
    instances: list["FakeScheduler"] = []

    def __init__(self) -> None:
        self.jobs: list[dict] = []
        self.started = False
        FakeScheduler.instances.append(self)

    def add_job(self, func, trigger, **kwargs) -> None:
        self.jobs.append({"func": func, "trigger": trigger, **kwargs})

    def start(self) -> None:
        self.started = True


def test_scheduler_registers_daily_job_at_execution_time(
    runner: ReportRunner, write_config, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(scheduler, "BlockingScheduler", FakeScheduler)
    config_path = write_config(Schedule={"ExecutionTime": "07:45"})

    scheduler.start_scheduler(runner, config_path)

    fake = FakeScheduler.instances[-1]
    assert fake.started is True
    (job,) = fake.jobs
    assert job["trigger"] == "cron"
    assert (job["hour"], job["minute"]) == (7, 45)
    assert job["id"] == "daily_change_report"


def test_run_now_executes_one_report(
    runner: ReportRunner, write_config, smtp, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(scheduler, "BlockingScheduler", FakeScheduler)

    scheduler.start_scheduler(runner, write_config(), run_now=True)

    assert len(smtp.sent) == 1
