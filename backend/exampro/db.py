from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from .config import DATABASE_URL, SCHEMA_SEARCH_PATH, DB_ECHO


class Base(DeclarativeBase):
    pass


def _connect_args() -> dict:
    # search_path is an asyncpg server setting; sqlite has no equivalent
    if SCHEMA_SEARCH_PATH and DATABASE_URL.startswith("postgresql"):
        return {"server_settings": {"search_path": SCHEMA_SEARCH_PATH}}
    return {}


engine = create_async_engine(
    DATABASE_URL,
    connect_args=_connect_args(),
    echo=DB_ECHO,
)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def create_db_and_tables(bind: AsyncEngine | None = None):

    from .models import exam_model, question_model, submission_model  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
