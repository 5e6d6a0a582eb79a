from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from config.config import Config
from xpreview.models.base import Base


def _build_engine(url: str):
    if not url.startswith('sqlite'):
        return create_engine(url, pool_pre_ping=True)

    sqlite_engine = create_engine(url, connect_args={'check_same_thread': False})

    # pysqlite issues its own BEGIN; take it over so SAVEPOINTs nest correctly
    @event.listens_for(sqlite_engine, 'connect')
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, 'begin')
    def _sqlite_begin(conn):
        conn.exec_driver_sql('BEGIN')

    return sqlite_engine


engine = _build_engine(Config.DATABASE_URL)

# Objects returned from get_db() stay readable after the session closes
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db():
    """Create all tables"""
    import xpreview.models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_db():
    """Drop all tables"""
    Base.metadata.drop_all(bind=engine)


@contextmanager
def get_db():
    """
    Transactional scope: commits when the block exits normally,
    rolls back and re-raises on any exception.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


class DatabaseManager:
    """Single-model reads and writes, each in its own transaction"""

    def __init__(self, model_class):
        self.model_class = model_class

    def create(self, **kwargs):
        with get_db() as db:
            instance = self.model_class(**kwargs)
            db.add(instance)
            db.flush()
            db.refresh(instance)
            return instance

    def get(self, id):
        with get_db() as db:
            return db.query(self.model_class).filter(self.model_class.id == id).first()

    def get_by(self, **kwargs):
        with get_db() as db:
            return self._filtered(db, kwargs).first()

    def filter(self, order_by=None, limit: int = None, **kwargs):
        with get_db() as db:
            query = self._filtered(db, kwargs)
            if order_by is not None:
                query = query.order_by(order_by)
            if limit:
                query = query.limit(limit)
            return query.all()

    def count(self, **kwargs):
        with get_db() as db:
            return self._filtered(db, kwargs).count()

    def _filtered(self, db, criteria):
        query = db.query(self.model_class)
        for key, value in criteria.items():
            query = query.filter(getattr(self.model_class, key) == value)
        return query
