from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

# Import so the bookings table is registered on SQLModel.metadata
import models  # noqa: F401


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    if not database_url:
        raise ValueError("DATABASE_URL is not set. Please check your .env file.")

    connect_args = {}
    if database_url.startswith("sqlite"):
        # Writers on other keys wait for the file lock instead of failing fast
        connect_args["timeout"] = 30
    return create_async_engine(database_url, echo=echo, future=True, connect_args=connect_args)


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        # This creates the tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)


def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
