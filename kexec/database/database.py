from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi import Request
import logging
import traceback

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_db_engine(uri: str) -> Engine:
    """Create the SQLAlchemy engine for the configured database."""
    if uri.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if uri in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(uri, **kwargs)
    else:
        engine = create_engine(
            uri,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            connect_args={
                "connect_timeout": 10,
                "application_name": "kexec_platform"
            } if "postgresql" in uri else {}
        )
    logger.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


def init_db(engine: Engine) -> sessionmaker:
    """Create tables if needed and return a session factory bound to the engine."""
    # Imported for their side effect of registering tables on Base.metadata
    from ..models import function, execution  # noqa: F401

    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Dependency
def get_db(request: Request):
    db = request.app.state.platform.session_factory()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {str(e)}")
        logger.error(traceback.format_exc())
        db.rollback()
        raise
    finally:
        db.close()
