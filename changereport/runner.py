from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
import logging
from pathlib import Path
import time

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from changereport.config import ReportRunConfig, Settings, load_config
from changereport.data_source import check_connectivity, fetch_changes, open_session
from changereport.database import build_engine, build_session_factory
from changereport.errors import AlreadyRunningError, ConfigurationError, DatabaseError, ErrorCategory, classify_error
from changereport.notifier import NotificationSender, SmtpFactory, connect_smtp
from changereport.renderer import build_error_subject, build_subject, render_error, render_no_changes, render_report
from changereport.run_guard import RunGuard
from changereport.run_log import RunLog, persist_document
from changereport.schemas import RunOutcome
from changereport.secret_store import SecretStore, SecretStoreError


logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    report_date: date
    test_mode: bool
    config: ReportRunConfig | None = None
    run_log: RunLog | None = None
    engine: Engine | None = None


class ReportRunner:
    def __init__(
        self,
        settings: Settings,
        *,
        smtp_factory: SmtpFactory = connect_smtp,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
        secret_store: SecretStore | None = None,
    ) -> None:
        self.settings = settings
        self.smtp_factory = smtp_factory
        self.sleep = sleep
        self.clock = clock
        self.secret_store = secret_store
        self.guard = RunGuard(Path(settings.state_dir))

    def run(
        self,
        config_path: str | Path,
        report_date: date | None = None,
        *,
        test_mode: bool = False,
        force: bool = False,
    ) -> RunOutcome:
        context = RunContext(report_date=report_date or self.clock().date(), test_mode=test_mode)
        try:
            self.guard.acquire(context.report_date, force=force, now=self.clock())
            change_count = self._run_cycle(config_path, context)
            outcome = RunOutcome.success(change_count)
            logger.info(
                "change report completed with %d changes",
                change_count,
                extra={"report_date": context.report_date.isoformat(), "test_mode": test_mode},
            )
        except AlreadyRunningError as exc:
            logger.warning("change report skipped: %s", exc)
            outcome = RunOutcome.failure(exc.category, str(exc))
        except Exception as exc:
            category = classify_error(exc)
            logger.exception(
                "change report failed with %s error: %s",
                category.value,
                exc,
                extra={"report_date": context.report_date.isoformat(), "category": category.value},
            )
            self._notify_failure(context, category, str(exc))
            outcome = RunOutcome.failure(category, str(exc))
        finally:
            self._cleanup(context)
        return outcome

    def _run_cycle(self, config_path: str | Path, context: RunContext) -> int:
        config = load_config(config_path, secret_store=self.secret_store)
        context.config = config

        context.run_log = RunLog.open(config.logging, self.clock().date())
        logger.info(
            "change report started for %s%s",
            context.report_date.isoformat(),
            " (test mode)" if context.test_mode else "",
        )

        context.engine = self._build_engine(config)
        session_factory = build_session_factory(context.engine)
        check_connectivity(session_factory)

        with open_session(session_factory) as db:
            records = fetch_changes(db, context.report_date)

        generated_at = self.clock()
        if records:
            document = render_report(records, context.report_date, generated_at)
        else:
            document = render_no_changes(context.report_date, generated_at)
        subject = build_subject(context.report_date, len(records))

        if context.test_mode:
            path = persist_document(
                config.logging.log_path,
                f"test-report-{context.report_date.isoformat()}",
                document,
                generated_at,
            )
            logger.info("test mode: report saved to %s instead of emailing (subject: %s)", path, subject)
            return len(records)

        self._sender(config).send(subject, document)
        return len(records)

    def _build_engine(self, config: ReportRunConfig) -> Engine:
        try:
            return build_engine(config.database)
        except SecretStoreError as exc:
            raise ConfigurationError(f"database password cannot be decrypted: {exc}") from exc
        except (SQLAlchemyError, ImportError) as exc:
            raise DatabaseError(f"database engine cannot be created: {exc}") from exc

    def _sender(self, config: ReportRunConfig) -> NotificationSender:
        return NotificationSender(
            config.email,
            config.logging.log_path,
            smtp_factory=self.smtp_factory,
            sleep=self.sleep,
            clock=self.clock,
        )

    def _notify_failure(self, context: RunContext, category: ErrorCategory, message: str) -> None:
        config = context.config
        if config is None:
            logger.debug("no configuration loaded; error notification skipped")
            return

        subject = build_error_subject(context.report_date, category)
        document = render_error(category, message, context.report_date, self.clock())
        try:
            if context.test_mode:
                path = persist_document(config.logging.log_path, "error-notification", document, self.clock())
                logger.info("test mode: error notification saved to %s", path)
                return
            self._sender(config).send(subject, document, max_retries=0, fallback_prefix="undelivered-error")
            logger.info("error notification sent", extra={"category": category.value})
        except Exception as exc:
            logger.warning("error notification could not be sent: %s", exc)

    def _cleanup(self, context: RunContext) -> None:
        if context.engine is not None:
            context.engine.dispose()
            context.engine = None
        if context.run_log is not None:
            context.run_log.close()
            context.run_log = None
