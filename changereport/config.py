from dataclasses import dataclass
from datetime import time
from enum import Enum
import json
import os
from pathlib import Path
import re
import tempfile

from dotenv import load_dotenv

from changereport.errors import ConfigurationError
from changereport.secret_store import CredentialHandle, SecretStore, SecretStoreError


load_dotenv()

DEFAULT_CONFIG_PATH = "./config/config.json"
DEFAULT_ODBC_DRIVER = "ODBC Driver 17 for SQL Server"
LOG_LEVELS = ("Debug", "Info", "Warning", "Error")

_ADDRESS_PATTERN = re.compile(r"^[^@\s<>()\[\],;:\"]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+$")
_EXECUTION_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class Settings:
    config_path: str
    state_dir: str
    secret_key: str | None
    stderr_log_level: str


def get_settings() -> Settings:
    return Settings(
        config_path=os.getenv("CHANGE_REPORT_CONFIG", DEFAULT_CONFIG_PATH),
        state_dir=os.getenv("CHANGE_REPORT_STATE_DIR", str(Path(tempfile.gettempdir()) / "change-report")),
        secret_key=os.getenv("CHANGE_REPORT_SECRET_KEY") or None,
        stderr_log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


class AuthType(str, Enum):
    WINDOWS = "Windows"
    SQL = "SQL"


@dataclass(frozen=True)
class DatabaseSettings:
    server: str
    database: str
    auth_type: AuthType
    credential: CredentialHandle | None = None
    driver: str = DEFAULT_ODBC_DRIVER
    url: str | None = None


@dataclass(frozen=True)
class EmailSettings:
    smtp_server: str
    port: int
    enable_ssl: bool
    sender: str
    recipients: tuple[str, ...]
    credential: CredentialHandle | None = None


@dataclass(frozen=True)
class LoggingSettings:
    log_path: Path
    log_level: str = "Info"


@dataclass(frozen=True)
class ScheduleSettings:
    execution_time: time = time(6, 0)


@dataclass(frozen=True)
class ReportRunConfig:
    database: DatabaseSettings
    email: EmailSettings
    logging: LoggingSettings
    schedule: ScheduleSettings


def is_valid_address(address: str) -> bool:
    return bool(_ADDRESS_PATTERN.match(address.strip()))


def load_config(path: str | Path, *, secret_store: SecretStore | None = None) -> ReportRunConfig:
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigurationError(f"configuration file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8-sig") as infile:
            raw = json.load(infile)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"configuration file is not valid JSON: {exc}") from exc
    except OSError as exc:
        raise ConfigurationError(f"configuration file cannot be read: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError("configuration root must be a JSON object")

    store = secret_store
    if store is None and _has_encrypted_secret(raw):
        store = SecretStore(get_settings().secret_key)

    return ReportRunConfig(
        database=_parse_database(_section(raw, "Database"), store),
        email=_parse_email(_section(raw, "Email"), store),
        logging=_parse_logging(_section(raw, "Logging")),
        schedule=_parse_schedule(raw.get("Schedule") or {}),
    )


def _has_encrypted_secret(raw: dict) -> bool:
    return any(
        isinstance(raw.get(name), dict) and raw[name].get("EncryptedPassword")
        for name in ("Database", "Email")
    )


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name)
    if not isinstance(section, dict):
        raise ConfigurationError(f"configuration section '{name}' is missing")
    return section


def _string(section: dict, key: str, where: str, *, required: bool = True) -> str:
    value = section.get(key)
    if value is None:
        value = ""
    if not isinstance(value, str):
        raise ConfigurationError(f"{where}.{key} must be a string")
    value = value.strip()
    if required and not value:
        raise ConfigurationError(f"{where}.{key} is required")
    return value


def _credential(username: str, token: str, store: SecretStore | None, where: str) -> CredentialHandle:
    if token:
        if store is None:
            raise ConfigurationError(f"{where}.EncryptedPassword needs a secret store")
        try:
            # Decrypt once to prove the token belongs to this identity.
            store.decrypt(token)
        except SecretStoreError as exc:
            raise ConfigurationError(f"{where}.EncryptedPassword cannot be decrypted: {exc}") from exc
    return CredentialHandle(username=username, token=token or None, store=store)


def _parse_database(section: dict, store: SecretStore | None) -> DatabaseSettings:
    url = _string(section, "Url", "Database", required=False) or None
    server = _string(section, "Server", "Database", required=url is None)
    database = _string(section, "Database", "Database", required=url is None)

    auth_raw = _string(section, "AuthType", "Database", required=False) or AuthType.WINDOWS.value
    try:
        auth_type = AuthType(auth_raw)
    except ValueError as exc:
        raise ConfigurationError(f"Database.AuthType must be one of Windows, SQL (got {auth_raw!r})") from exc

    credential = None
    if auth_type is AuthType.SQL:
        username = _string(section, "Username", "Database")
        token = _string(section, "EncryptedPassword", "Database")
        credential = _credential(username, token, store, "Database")

    return DatabaseSettings(
        server=server,
        database=database,
        auth_type=auth_type,
        credential=credential,
        driver=_string(section, "Driver", "Database", required=False) or DEFAULT_ODBC_DRIVER,
        url=url,
    )


def _parse_email(section: dict, store: SecretStore | None) -> EmailSettings:
    smtp_server = _string(section, "SMTPServer", "Email")

    port = section.get("Port", 25)
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigurationError("Email.Port must be an integer between 1 and 65535")

    enable_ssl = section.get("EnableSSL", False)
    if not isinstance(enable_ssl, bool):
        raise ConfigurationError("Email.EnableSSL must be true or false")

    sender = _string(section, "From", "Email")
    if not is_valid_address(sender):
        raise ConfigurationError(f"Email.From is not a valid address: {sender!r}")

    to_raw = section.get("To")
    if isinstance(to_raw, str):
        to_raw = [to_raw]
    if not isinstance(to_raw, list) or not all(isinstance(item, str) for item in to_raw):
        raise ConfigurationError("Email.To must be a list of addresses")
    recipients = tuple(item.strip() for item in to_raw if item.strip())
    if not recipients:
        raise ConfigurationError("Email.To must contain at least one recipient")
    invalid = [item for item in recipients if not is_valid_address(item)]
    if invalid:
        raise ConfigurationError(f"Email.To contains invalid addresses: {', '.join(invalid)}")

    username = _string(section, "Username", "Email", required=False)
    token = _string(section, "EncryptedPassword", "Email", required=False)
    if token and not username:
        raise ConfigurationError("Email.Username is required when Email.EncryptedPassword is set")
    credential = _credential(username, token, store, "Email") if username else None

    return EmailSettings(
        smtp_server=smtp_server,
        port=port,
        enable_ssl=enable_ssl,
        sender=sender,
        recipients=recipients,
        credential=credential,
    )


def _parse_logging(section: dict) -> LoggingSettings:
    log_path = _string(section, "LogPath", "Logging")
    level = _string(section, "LogLevel", "Logging", required=False) or "Info"
    normalized = level.capitalize()
    if normalized not in LOG_LEVELS:
        raise ConfigurationError(f"Logging.LogLevel must be one of {', '.join(LOG_LEVELS)} (got {level!r})")
    return LoggingSettings(log_path=Path(log_path), log_level=normalized)


def _parse_schedule(section: dict) -> ScheduleSettings:
    if not isinstance(section, dict):
        raise ConfigurationError("configuration section 'Schedule' must be an object")
    raw = _string(section, "ExecutionTime", "Schedule", required=False)
    if not raw:
        return ScheduleSettings()
    match = _EXECUTION_TIME_PATTERN.match(raw)
    if not match:
        raise ConfigurationError(f"Schedule.ExecutionTime must be HH:MM (got {raw!r})")
    return ScheduleSettings(execution_time=time(int(match.group(1)), int(match.group(2))))
