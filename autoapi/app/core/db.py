import logging

from sqlalchemy.engine import make_url
from sqlmodel import Session, SQLModel, create_engine, text

from autoapi.app.core.config import settings

logger = logging.getLogger(__name__)

connect_args = {}
database_url = settings.get_database_url()
if database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False


def create_db_if_not_exists():
    if not database_url.startswith("mysql"):
        return
    url = make_url(database_url)
    db_name = url.database
    # Connect to the always-present 'mysql' schema to create the target database.
    tmp_engine = create_engine(url.set(database="mysql"), echo=settings.SQL_ECHO)
    try:
        with tmp_engine.connect() as conn:
            conn.execute(text(f"CREATE DATABASE IF NOT EXISTS `{db_name}`"))
        logger.info(f"Database {db_name} ensured.")
    except Exception as e:
        logger.warning(f"Could not check/create database {db_name}: {e}")
    finally:
        tmp_engine.dispose()


engine = create_engine(database_url, echo=settings.SQL_ECHO, connect_args=connect_args)


def create_db_and_tables():
    # Register table models on SQLModel.metadata before create_all.
    from autoapi.app.models import api_service, audit, datasource  # noqa: F401

    create_db_if_not_exists()
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session
