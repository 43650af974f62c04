from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from storefront.core.config import settings

class Base(DeclarativeBase): pass

def _engine_kwargs(dsn: str) -> dict:
    if dsn.startswith("sqlite"):
        # one shared connection so in-memory databases survive across threads
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_pre_ping": True}

engine = create_engine(settings.POSTGRES_DSN, **_engine_kwargs(settings.POSTGRES_DSN))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
