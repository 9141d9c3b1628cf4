import os
import sqlite3
import tempfile
import unittest

from sqlmodel import Session, SQLModel, create_engine

import autoapi.app.models.api_service  # noqa: F401
import autoapi.app.models.audit  # noqa: F401
import autoapi.app.models.datasource  # noqa: F401
from autoapi.app.core.context import RequestContext
from autoapi.app.models.api_service import ApiServiceCreate
from autoapi.app.models.datasource import DataSourceCreate
from autoapi.app.services import audit_service, datasource_service, lifecycle_service, testing_service

OWNER = RequestContext(user_id=1, tenant_id=1)
COLLEAGUE = RequestContext(user_id=2, tenant_id=1)
OUTSIDER = RequestContext(user_id=3, tenant_id=2)


class ServiceTestCase(unittest.TestCase):
    """System database and source database on temporary SQLite files."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.engine = create_engine(
            f"sqlite:///{os.path.join(self.tmp.name, 'system.db')}",
            connect_args={"check_same_thread": False},
            echo=False,
        )
        SQLModel.metadata.create_all(self.engine)

        self._orig_engines = (audit_service.engine, testing_service.engine)
        audit_service.engine = self.engine
        testing_service.engine = self.engine

        self.source_path = os.path.join(self.tmp.name, "source.db")
        conn = sqlite3.connect(self.source_path)
        conn.executescript(
            """
            CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, city TEXT);
            INSERT INTO users VALUES (1, 'alice', 'Paris');
            INSERT INTO users VALUES (2, 'bob', 'Lyon');
            INSERT INTO users VALUES (3, 'carol', 'Paris');
            """
        )
        conn.commit()
        conn.close()

    def tearDown(self):
        datasource_service.factory.close_all()
        audit_service.engine, testing_service.engine = self._orig_engines
        self.engine.dispose()
        self.tmp.cleanup()

    def session(self):
        return Session(self.engine)

    def create_datasource(self, ctx=OWNER, **overrides):
        values = {"name": "local", "type": "sqlite", "database": self.source_path}
        values.update(overrides)
        with self.session() as session:
            datasource = datasource_service.create_datasource(session, ctx, DataSourceCreate(**values))
            return datasource.id

    def create_service(self, datasource_id, ctx=OWNER, **overrides):
        values = {
            "name": "users",
            "path": "/users",
            "datasource_id": datasource_id,
            "sql_content": "SELECT id, name FROM users WHERE city = ${city} ORDER BY id",
        }
        values.update(overrides)
        with self.session() as session:
            return lifecycle_service.create_api_service(session, ctx, ApiServiceCreate(**values)).id
