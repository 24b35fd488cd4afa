from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import NullPool
import logging

from docvault.core.config import settings
from docvault.utils.exceptions import ConflictError, InternalError

logger = logging.getLogger(__name__)

# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    poolclass=NullPool,  # Use NullPool for serverless/container environments
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Create Base class for models
Base = declarative_base()


async def create_tables() -> None:
    """Create all tables (development / AUTO_CREATE_TABLES only)"""
    # Import models so they are registered on the metadata
    import docvault.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Dependency to get DB session
async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def commit_or_raise(db: AsyncSession, conflict_message: str = "Resource was modified concurrently") -> None:
    """Commit, mapping constraint violations to ConflictError and other failures to InternalError"""
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning("Commit rejected by constraint: %s", e.orig)
        raise ConflictError(conflict_message)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Metadata transaction failed: %s", e)
        raise InternalError("Metadata transaction failed")
