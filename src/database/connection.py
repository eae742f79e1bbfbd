import os
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, scoped_session

# Configuración de logs
logger = logging.getLogger(__name__)

# --- SQLAlchemy Configuration ---


def get_database_url() -> str:
    """Construye la URL de conexión a partir de variables de entorno."""
    url = os.getenv("DATABASE_URL")
    if url:
        # Asegurar driver correcto para PostgreSQL si no se especifica
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+psycopg2://", 1)
        elif url.startswith("postgresql://") and "+psycopg2" not in url:
            if "+" not in url.split("://")[0]:
                url = url.replace("postgresql://", "postgresql+psycopg2://", 1)
        return url

    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD", "")
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    db_name = os.getenv("DB_NAME", "aleris_ops")
    sslmode = os.getenv("DB_SSLMODE", "")

    auth = f"{user}:{password}" if password else user

    base_url = f"postgresql+psycopg2://{auth}@{host}:{port}/{db_name}"

    # SSL requerido en bases de datos gestionadas
    if sslmode:
        base_url += f"?sslmode={sslmode}"

    return base_url


def is_sqlite_url(url: str) -> bool:
    return str(url or "").strip().lower().startswith("sqlite")


def enable_sqlite_foreign_keys(engine) -> None:
    # SQLite ignora ON DELETE CASCADE salvo que se active por conexión
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str):
    """Crea el engine con las opciones de pool adecuadas para el dialecto."""
    if is_sqlite_url(url):
        sqlite_engine = create_engine(url, connect_args={"check_same_thread": False})
        enable_sqlite_foreign_keys(sqlite_engine)
        return sqlite_engine

    is_serverless = bool(
        os.getenv("VERCEL")
        or os.getenv("AWS_LAMBDA_FUNCTION_NAME")
        or os.getenv("K_SERVICE")
    )
    try:
        pool_size = int(os.getenv("DB_POOL_SIZE", "1" if is_serverless else "10"))
    except ValueError:
        pool_size = 1 if is_serverless else 10
    try:
        max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "0" if is_serverless else "20"))
    except ValueError:
        max_overflow = 0 if is_serverless else 20
    tz_name = os.getenv("APP_TIMEZONE", "America/Bogota")
    return create_engine(
        url,
        pool_pre_ping=True,  # Verifica la conexión antes de usarla
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_recycle=1800,  # Reciclar conexiones cada 30 mins
        connect_args={"options": f"-c timezone={tz_name}"},
    )


DATABASE_URL = get_database_url()

engine = build_engine(DATABASE_URL)

session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
SessionLocal = scoped_session(session_factory)
