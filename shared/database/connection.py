"""Conexión a la base de datos PostgreSQL"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import logging
import asyncio

from app.core.config import settings

logger = logging.getLogger(__name__)

# Base para modelos SQLAlchemy
Base = declarative_base()

# Engine y session factory
engine = None
async_session_maker = None


def _to_async_url(database_url: str) -> str:
    """Convertir la URL configurada al driver async correspondiente"""
    # Limpiar parámetros de la URL (se configuran en connect_args)
    if "?" in database_url:
        database_url = database_url.split("?")[0]

    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql+psycopg://"):
        return database_url.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


async def init_db(database_url: Optional[str] = None, create_tables: bool = False):
    """Inicializar conexión a la base de datos"""
    global engine, async_session_maker

    if engine is not None:
        logger.warning("Database engine already initialized, skipping...")
        return

    database_url = _to_async_url(database_url or settings.DATABASE_URL)
    logger.info(f"Initializing database connection to: {database_url.split('@')[1] if '@' in database_url else database_url}")
    logger.info(f"Using async driver: {database_url.split(':')[0]}")

    if database_url.startswith("sqlite"):
        # SQLite serializa escritores; basta con esperar el lock
        engine = create_async_engine(
            database_url,
            echo=settings.APP_DEBUG,
            connect_args={"timeout": 30},
        )
    else:
        pool_config = {
            "pool_pre_ping": True,  # Verificar conexiones antes de usar
            "pool_recycle": 300,
            "pool_timeout": 30,
            "pool_use_lifo": True,
            "pool_size": settings.DATABASE_POOL_SIZE,
            "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        }
        logger.info(f"Pool config: size={pool_config['pool_size']}, overflow={pool_config['max_overflow']}")
        engine = create_async_engine(
            database_url,
            echo=settings.APP_DEBUG,
            **pool_config
        )

    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    if create_tables:
        # Importar modelos para registrarlos en la metadata
        import shared.database.models  # noqa: F401
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    logger.info("Database engine initialized successfully")


def get_session_maker() -> async_sessionmaker:
    """Obtener la session factory (para tareas fuera de requests)"""
    if async_session_maker is None:
        raise RuntimeError("Database not initialized. Please check application startup.")
    return async_session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency para obtener sesión de base de datos con retry para errores transitorios.

    Maneja errores de DNS y conexión transitorios con retry exponencial.
    """
    if async_session_maker is None:
        logger.error("Database not initialized! Call init_db() first.")
        raise RuntimeError("Database not initialized. Please check application startup.")

    max_retries = 3
    retry_delay = 0.5  # Segundos iniciales
    last_exception = None

    for attempt in range(max_retries):
        try:
            async with async_session_maker() as session:
                yield session
                return  # Exit después de yield exitoso
        except OSError as e:
            # Captura errores de DNS y socket (socket.gaierror es subclase de OSError)
            last_exception = e
            if attempt < max_retries - 1:
                delay = retry_delay * (2 ** attempt)  # Exponential backoff
                logger.warning(
                    f"Database connection error (attempt {attempt + 1}/{max_retries}): {type(e).__name__}: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"Database connection failed after {max_retries} attempts: {e}")

    # Si llegamos aquí, todos los reintentos fallaron
    raise last_exception or RuntimeError("Database connection failed")


async def close_db():
    """Cerrar conexiones a la base de datos"""
    global engine, async_session_maker
    if engine:
        logger.info("Closing database connections...")
        await engine.dispose()
        engine = None
        async_session_maker = None
        logger.info("Database connections closed")


@asynccontextmanager
async def task_session_maker(database_url: Optional[str] = None):
    """
    Engine efímero para tareas Celery: cada tarea corre en su propio event loop
    y las conexiones no pueden compartirse entre loops.
    """
    task_engine = create_async_engine(
        _to_async_url(database_url or settings.DATABASE_URL),
        poolclass=NullPool,
    )
    try:
        yield async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await task_engine.dispose()
