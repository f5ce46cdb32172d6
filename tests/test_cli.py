import os
from pathlib import Path
import subprocess
import sys

from tests.helpers import scenario_rows, seed_changes


def _base_env(tmp_path: Path) -> dict[str, str]:
    env = os.environ.copy()
    env["CHANGE_REPORT_STATE_DIR"] = str(tmp_path / "state")
    env.pop("CHANGE_REPORT_CONFIG", None)
    return env


def _run_cli(tmp_path: Path, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "changereport.main", "run", *args],
        cwd=Path(__file__).resolve().parents[1],
        env=_base_env(tmp_path),
        check=False,
        capture_output=True,
        text=True,
    )


def test_cli_exits_zero_in_test_mode(tmp_path: Path, write_config, database_url: str) -> None:
    seed_changes(database_url, scenario_rows())
    config_path = write_config()

    proc = _run_cli(tmp_path, "--config", str(config_path), "--report-date", "2024-01-15", "--test-mode")

    assert proc.returncode == 0
    assert "status=success changes=3" in proc.stdout
    assert list((tmp_path / "logs").glob("test-report-2024-01-15-*.html"))


def test_cli_exits_with_configuration_code(tmp_path: Path) -> None:
    proc = _run_cli(tmp_path, "--config", str(tmp_path / "missing.json"), "--report-date", "2024-01-15")

    assert proc.returncode == 2
    assert "category=Configuration" in proc.stdout


def test_cli_exits_five_when_run_recently(tmp_path: Path, write_config) -> None:
    config_path = write_config()
    args = ("--config", str(config_path), "--report-date", "2024-01-15", "--test-mode")

    first = _run_cli(tmp_path, *args)
    second = _run_cli(tmp_path, *args)

    assert first.returncode == 0
    assert second.returncode == 5
    assert "category=AlreadyRunning" in second.stdout
