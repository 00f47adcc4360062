from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from studio_credits.core.settings import settings


def _connect_args(database_url: str) -> dict:
    lock_timeout_ms = int(max(settings.db_lock_timeout_s, 0.1) * 1000)
    if database_url.startswith("sqlite"):
        # pysqlite waits this many seconds on a locked database before raising OperationalError
        return {"check_same_thread": False, "timeout": settings.db_lock_timeout_s}

    connect_args: dict = {}
    try:
        url = make_url(database_url)
        if (url.drivername or "").startswith("postgresql"):
            import socket

            connect_args = {
                "options": f"-c lock_timeout={lock_timeout_ms} -c statement_timeout={lock_timeout_ms * 3}",
            }
            host = url.host
            port = int(url.port or 5432)
            if host and host.endswith(".supabase.co"):
                infos = socket.getaddrinfo(host, port, family=socket.AF_INET, type=socket.SOCK_STREAM)
                if infos:
                    ipv4 = infos[0][4][0]
                    if ipv4:
                        connect_args.update({"sslmode": "require", "hostaddr": ipv4})
    except (ValueError, OSError):
        connect_args = {"options": f"-c lock_timeout={lock_timeout_ms}"}
    return connect_args


def make_engine(database_url: str) -> Engine:
    return create_engine(database_url, connect_args=_connect_args(database_url), pool_pre_ping=True)


SQLALCHEMY_DATABASE_URL = settings.database_url

engine = make_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def insert_ignore(db: Session, model, values: dict, index_elements: list[str]) -> None:
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    else:
        pk = {name: values[name] for name in index_elements}
        if db.get(model, pk if len(pk) > 1 else next(iter(pk.values()))) is None:
            db.add(model(**values))
            db.flush()
        return
    db.execute(dialect_insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements))


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
