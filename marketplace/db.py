from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from marketplace.config import get_settings

DATABASE_URL = get_settings().database_url


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("postgres"):
        connect_args = {"options": "-c timezone=utc"}
    elif database_url.startswith("sqlite"):
        # busy timeout doubles as the lock-wait ceiling on SQLite
        connect_args = {"check_same_thread": False, "timeout": 5}
    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
