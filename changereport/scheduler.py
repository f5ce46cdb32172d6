import logging
from pathlib import Path

from apscheduler.schedulers.blocking import BlockingScheduler

from changereport.config import load_config
from changereport.runner import ReportRunner


logger = logging.getLogger(__name__)


def _run_daily_report(runner: ReportRunner, config_path: str) -> None:
    report_date = runner.clock().date()
    outcome = runner.run(config_path, report_date)
    if not outcome.succeeded:
        logger.error(
            "scheduled change report failed",
            extra={
                "report_date": report_date.isoformat(),
                "category": outcome.category.value if outcome.category else None,
                "exit_code": outcome.exit_code,
            },
        )
        return
    logger.info(
        "scheduled change report completed",
        extra={"report_date": report_date.isoformat(), "change_count": outcome.change_count},
    )


def start_scheduler(runner: ReportRunner, config_path: str | Path, *, run_now: bool = False) -> None:
    config = load_config(config_path, secret_store=runner.secret_store)
    execution_time = config.schedule.execution_time

    scheduler = BlockingScheduler()
    scheduler.add_job(
        _run_daily_report,
        "cron",
        args=[runner, str(config_path)],
        hour=execution_time.hour,
        minute=execution_time.minute,
        id="daily_change_report",
        replace_existing=True,
        misfire_grace_time=3600,
        coalesce=True,
    )

    logger.info(
        "scheduler started",
        extra={"execution_time": execution_time.strftime("%H:%M")},
    )

    if run_now:
        _run_daily_report(runner, str(config_path))

    scheduler.start()
