from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from changereport.config import AuthType, DatabaseSettings


QUERY_TIMEOUT_SECONDS = 30


def build_database_url(settings: DatabaseSettings) -> str | URL:
    if settings.url:
        return settings.url

    query = {"driver": settings.driver}
    username = None
    password = None
    if settings.auth_type is AuthType.SQL and settings.credential is not None:
        username = settings.credential.username
        password = settings.credential.reveal()
    else:
        query["trusted_connection"] = "yes"

    return URL.create(
        "mssql+pyodbc",
        username=username,
        password=password,
        host=settings.server,
        database=settings.database,
        query=query,
    )


def build_engine(settings: DatabaseSettings) -> Engine:
    url = build_database_url(settings)
    backend = make_url(url).get_backend_name()

    connect_args: dict[str, object] = {"timeout": QUERY_TIMEOUT_SECONDS}
    if backend == "sqlite":
        connect_args["check_same_thread"] = False
    elif backend != "mssql":
        connect_args = {}

    engine = create_engine(url, future=True, connect_args=connect_args, pool_pre_ping=True)

    if backend == "mssql":
        @event.listens_for(engine, "connect")
        def _set_query_timeout(dbapi_connection, connection_record) -> None:
            # pyodbc applies Connection.timeout to every statement.
            dbapi_connection.timeout = QUERY_TIMEOUT_SECONDS

    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
