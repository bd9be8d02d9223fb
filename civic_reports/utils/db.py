from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from civic_reports.config import settings

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

# SQLite is used for local runs and tests; the connection is shared across threads there
connect_args = {"check_same_thread": False} if SQLALCHEMY_DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(SQLALCHEMY_DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Shared base class for every model
Base = declarative_base()


# Database session dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Create all tables (called on startup)
def create_tables():
    # Import models so they register on Base.metadata
    from civic_reports import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
