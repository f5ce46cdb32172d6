import argparse
from datetime import date
import getpass
import logging

from changereport.config import get_settings
from changereport.errors import ConfigurationError
from changereport.run_log import build_stderr_handler
from changereport.runner import ReportRunner
from changereport.scheduler import start_scheduler
from changereport.secret_store import SecretStore


def parse_args(default_config: str) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Email the daily Critical/High priority change report")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="run one report cycle")
    run_parser.add_argument("--config", default=default_config, help="Path to the JSON configuration file")
    run_parser.add_argument(
        "--report-date",
        type=date.fromisoformat,
        help="Report date in YYYY-MM-DD format (default: today)",
    )
    run_parser.add_argument(
        "--test-mode",
        action="store_true",
        help="save the rendered report to the log directory instead of emailing it",
    )
    run_parser.add_argument("--force", action="store_true", help="run even if a run for the date started recently")

    schedule_parser = subparsers.add_parser("schedule", help="run the report daily at Schedule.ExecutionTime")
    schedule_parser.add_argument("--config", default=default_config, help="Path to the JSON configuration file")
    schedule_parser.add_argument("--run-now", action="store_true", help="also run once immediately")

    subparsers.add_parser("encrypt-secret", help="encrypt a password for the configuration file")

    return parser.parse_args()


def main() -> None:
    settings = get_settings()
    args = parse_args(settings.config_path)

    stderr_handler = build_stderr_handler(settings.stderr_log_level)
    logging.basicConfig(
        level=stderr_handler.level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=[stderr_handler],
    )

    if args.command == "encrypt-secret":
        secret = getpass.getpass("Password: ")
        print(SecretStore(settings.secret_key).encrypt(secret))
        return

    runner = ReportRunner(settings)
    if args.command == "schedule":
        try:
            start_scheduler(runner, args.config, run_now=args.run_now)
        except ConfigurationError as exc:
            logging.getLogger(__name__).error("cannot start scheduler: %s", exc)
            raise SystemExit(exc.category.exit_code) from exc
        return

    report_date = args.report_date or date.today()
    outcome = runner.run(args.config, report_date, test_mode=args.test_mode, force=args.force)

    print(
        "report_date={report_date} status={status} changes={changes} category={category} exit_code={exit_code}".format(
            report_date=report_date.isoformat(),
            status=outcome.status,
            changes=outcome.change_count,
            category=outcome.category.value if outcome.category else "-",
            exit_code=outcome.exit_code,
        )
    )
    raise SystemExit(outcome.exit_code)


if __name__ == "__main__":
    main()
