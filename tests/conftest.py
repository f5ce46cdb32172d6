from collections.abc import Generator
import json
from pathlib import Path

import pytest

from changereport.config import Settings
from changereport.runner import ReportRunner

from tests.helpers import FIXED_NOW, SmtpRecorder, seed_changes


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "logs").mkdir(parents=True, exist_ok=True)
    (tmp_path / "state").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def database_url(temp_workspace: Path) -> str:
    url = f"sqlite:///{temp_workspace / 'changes.db'}"
    seed_changes(url, [])
    return url


@pytest.fixture()
def write_config(temp_workspace: Path, database_url: str):
    def _write(**sections: dict) -> Path:
        config = {
            "Database": {"Url": database_url, "AuthType": "Windows"},
            "Email": {
                "SMTPServer": "smtp.example.com",
                "Port": 25,
                "EnableSSL": False,
                "From": "change-report@example.com",
                "To": ["cab@example.com", "", "ops@example.com"],
            },
            "Logging": {"LogPath": str(temp_workspace / "logs"), "LogLevel": "Info"},
            "Schedule": {"ExecutionTime": "06:00"},
        }
        config.update(sections)
        path = temp_workspace / "config" / "config.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(config), encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        config_path=str(temp_workspace / "config" / "config.json"),
        state_dir=str(temp_workspace / "state"),
        secret_key=None,
        stderr_log_level="INFO",
    )


@pytest.fixture()
def smtp() -> SmtpRecorder:
    return SmtpRecorder()


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def runner(test_settings: Settings, smtp: SmtpRecorder, sleeps: list[float]) -> Generator[ReportRunner, None, None]:
    yield ReportRunner(
        test_settings,
        smtp_factory=smtp,
        sleep=sleeps.append,
        clock=lambda: FIXED_NOW,
    )
