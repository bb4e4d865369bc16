import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from lending.configs import DB_URI, DEBUG

logger = logging.getLogger(__name__)


def make_engine(uri=DB_URI, **kwargs):
    engine_kwargs = {'echo': DEBUG}
    # Only use client_encoding for PostgreSQL, not SQLite
    if uri.startswith('sqlite'):
        engine_kwargs['connect_args'] = {'check_same_thread': False}
        if ':memory:' in uri:
            engine_kwargs['poolclass'] = StaticPool
    else:
        engine_kwargs['client_encoding'] = 'utf8'
    engine_kwargs.update(kwargs)
    return create_engine(uri, **engine_kwargs)


def make_session_factory(bind):
    """Sessions outlive their commit: objects returned from a unit of
    work keep their loaded attributes after the session is closed."""
    return sessionmaker(
        bind=bind, autoflush=False, expire_on_commit=False)


engine = make_engine()
SessionLocal = make_session_factory(engine)


class LendingBase:
    @classmethod
    def get_many(cls, session, offset=None, limit=None):
        return session.query(cls).order_by(cls.id).offset(offset).limit(limit).all()


Base = declarative_base(cls=LendingBase)


def init(bind=engine):
    """Creates every table registered on Base."""
    # models register themselves with Base on import
    from lending.core import models  # noqa: F401
    Base.metadata.create_all(bind=bind)
    logger.info(f"Database tables ready on {bind.url.render_as_string(hide_password=True)}")
