"""
Database connection and session factory for the compensation engine.
Connection settings come from the environment (.env supported).
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Database configuration
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_NAME = os.getenv("DB_NAME")
DB_HOST = os.getenv("DB_HOST", "127.0.0.1")
DB_PORT = int(os.getenv("DB_PORT", "3306"))

# Full URL override (used by tests and local SQLite runs)
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"mysql+pymysql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

# Upper bound on concurrent per-teacher / per-controller computations.
# Each worker holds its own connection, so keep this below pool_size + max_overflow.
MAX_WORKERS = int(os.getenv("COMPENSATION_MAX_WORKERS", "4"))

# Create database engine with connection pooling
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL debugging
        connect_args={
            "connect_timeout": 10,
            "read_timeout": 60,  # salary batches run long aggregate reads
            "write_timeout": 30,
        },
    )

# Create SessionLocal class for database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def get_db():
    """
    Dependency function to get database session.
    Use this in FastAPI endpoints with Depends(get_db).

    Example:
        @app.get("/teacher-payments/{teacher_id}")
        def get_salary(teacher_id: int, db: Session = Depends(get_db)):
            return SalaryCalculator(db).compute_teacher_salary(teacher_id, ...)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """
    Dependency returning the session factory used by batch computations.

    Worker threads never share a Session; each one opens its own from this
    factory. Tests override it to point at the in-memory database.
    """
    return SessionLocal
