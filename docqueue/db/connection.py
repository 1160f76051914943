import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Optional
from urllib.parse import quote_plus

from sqlalchemy import MetaData, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from docqueue.config import QueueConfig

# Configure logging
logger = logging.getLogger(__name__)

metadata = MetaData()
Base = declarative_base(metadata=metadata)


class Database:
    """
    Database connection manager for the system of record

    Handles SQLite (file or ':memory:') and PostgreSQL connections with
    connection pooling. Blocking; async callers go through run_blocking.
    """

    def __init__(self, config: Optional[QueueConfig] = None, url: Optional[str] = None):
        """
        Initialize database connection

        Args:
            config: QueueConfig instance. If None, uses defaults.
            url: Explicit SQLAlchemy URL, overrides the `database` section
        """
        self.config = config or QueueConfig()
        self.url = url
        self.engine: Optional[Engine] = None
        self.Session: Optional[sessionmaker] = None
        self._initialize()

    @classmethod
    def in_memory(cls, config: Optional[QueueConfig] = None) -> 'Database':
        """In-memory SQLite database with all tables created"""
        db = cls(config, url='sqlite:///:memory:')
        db.create_tables()
        return db

    def _initialize(self) -> None:
        """Initialize database connection and session factory"""
        max_retries = 3
        retry_delay = 1  # seconds

        for attempt in range(max_retries):
            try:
                self.engine = self._create_engine()

                # Test connection
                with self.engine.connect() as conn:
                    conn.execute(text("SELECT 1"))

                self.Session = sessionmaker(
                    bind=self.engine,
                    expire_on_commit=False,
                    autocommit=False,
                    autoflush=False
                )
                return

            except SQLAlchemyError as e:
                if attempt < max_retries - 1:
                    logger.warning(
                        f"Database connection attempt {attempt + 1} failed: {str(e)}. "
                        f"Retrying in {retry_delay} seconds..."
                    )
                    time.sleep(retry_delay)
                    retry_delay *= 2
                else:
                    raise RuntimeError(
                        f"Failed to connect to database after {max_retries} attempts: {str(e)}"
                    ) from e

    def _create_engine(self) -> Engine:
        if self.url:
            url = self.url
        else:
            url = self._url_from_config(self.config.get_section('database'))

        if url.startswith('sqlite'):
            if url in ('sqlite://', 'sqlite:///:memory:'):
                # One shared connection so every session sees the same database
                engine = create_engine(
                    url,
                    poolclass=StaticPool,
                    connect_args={'check_same_thread': False}
                )
            else:
                engine = create_engine(
                    url,
                    poolclass=QueuePool,
                    pool_size=5,
                    max_overflow=10,
                    pool_timeout=30,
                    pool_recycle=1800,
                    connect_args={
                        'timeout': 30,
                        'check_same_thread': False
                    }
                )

            # Enable foreign key support
            @event.listens_for(engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

            return engine

        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800
        )

    @staticmethod
    def _url_from_config(db_config: Dict[str, Any]) -> str:
        db_type = db_config.get('type', 'sqlite')

        if db_type == 'sqlite':
            db_path = str(db_config.get('path', 'docqueue.db'))
            if db_path == ':memory:':
                return 'sqlite:///:memory:'
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            return f'sqlite:///{path}'

        postgres_config = db_config.get('postgres', {})
        host = postgres_config.get('host', 'localhost')
        port = postgres_config.get('port', 5432)
        database = postgres_config.get('database', 'docqueue')
        # URL-encode user and password to handle special characters
        user = quote_plus(str(postgres_config.get('user', 'postgres')))
        password = quote_plus(str(postgres_config.get('password', '')))
        sslmode = postgres_config.get('sslmode', 'prefer')
        return f'postgresql://{user}:{password}@{host}:{port}/{database}?sslmode={sslmode}'

    def session(self) -> Session:
        """
        Get a database session

        Returns:
            SQLAlchemy session
        """
        return self.Session()

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Get a database session with transaction management

        Yields:
            SQLAlchemy session
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database transaction error: {str(e)}")
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all tables defined in the metadata"""
        # Import models so they register on the metadata
        from docqueue.db import models  # noqa: F401

        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {str(e)}")
            raise

    def drop_tables(self) -> None:
        """Drop all tables defined in the metadata"""
        Base.metadata.drop_all(self.engine)

    def close(self) -> None:
        """Close database connection"""
        if self.engine:
            self.engine.dispose()
