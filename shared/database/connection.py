"""Conexión a la base de datos (PostgreSQL en producción, SQLite en tests)"""
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from typing import AsyncGenerator, Optional
import logging

from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Base para modelos SQLAlchemy
Base = declarative_base()

# Engine y session factory
engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker] = None


def to_async_url(database_url: str) -> str:
    """Convertir una URL de base de datos a su driver async"""
    # Limpiar parámetros de la URL (SSL y similares se configuran aparte)
    if "?" in database_url:
        database_url = database_url.split("?")[0]

    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql+psycopg://"):
        return database_url.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


def build_engine(database_url: str, settings: Optional[Settings] = None) -> AsyncEngine:
    """Crear engine async con la configuración de pool adecuada"""
    settings = settings or get_settings()
    database_url = to_async_url(database_url)

    if database_url.startswith("sqlite"):
        # SQLite: una conexión por sesión, las escrituras se serializan en el archivo
        return create_async_engine(
            database_url,
            echo=settings.APP_DEBUG,
            poolclass=NullPool,
            connect_args={"timeout": 30},
        )

    return create_async_engine(
        database_url,
        echo=settings.APP_DEBUG,
        pool_pre_ping=True,  # Verificar conexiones antes de usar
        pool_recycle=300,
        pool_timeout=30,
        pool_use_lifo=True,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


async def init_db(settings: Optional[Settings] = None):
    """Inicializar conexión a la base de datos"""
    global engine, async_session_maker

    if engine is not None:
        logger.warning("Database engine already initialized, skipping...")
        return

    settings = settings or get_settings()
    database_url = settings.DATABASE_URL
    logger.info(f"Initializing database connection to: {database_url.split('@')[1] if '@' in database_url else database_url}")

    engine = build_engine(database_url, settings)
    async_session_maker = build_session_maker(engine)

    if settings.DB_CREATE_TABLES:
        await create_tables(engine)

    logger.info("Database engine initialized successfully")


async def create_tables(bind: AsyncEngine):
    """Crear tablas que no existan (desarrollo y tests)"""
    # Registrar modelos en Base.metadata
    import shared.database.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency para obtener sesión de base de datos"""
    if async_session_maker is None:
        logger.error("Database not initialized! Call init_db() first.")
        raise RuntimeError("Database not initialized. Please check application startup.")

    async with async_session_maker() as session:
        yield session


async def close_db():
    """Cerrar conexiones a la base de datos"""
    global engine, async_session_maker
    if engine:
        logger.info("Closing database connections...")
        await engine.dispose()
        engine = None
        async_session_maker = None
        logger.info("Database connections closed")
