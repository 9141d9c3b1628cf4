import threading
import unittest

from sqlmodel import select

from autoapi.app.core.errors import (
    DuplicateVersionLabel,
    InvalidState,
    NoActiveVersion,
    NotFound,
    PermissionDenied,
    VersionNotFound,
)
from autoapi.app.models.api_service import (
    ApiService,
    ApiServiceUpdate,
    ApiServiceVersion,
    ApiStatus,
    DifferenceType,
    PublishRequest,
)
from autoapi.app.models.audit import AuditLog
from autoapi.app.services import lifecycle_service
from autoapi.datasource.errors import QueryRejected
from autoapi.tests.support import COLLEAGUE, OUTSIDER, OWNER, ServiceTestCase


class TestLifecycle(ServiceTestCase):
    def setUp(self):
        super().setUp()
        self.datasource_id = self.create_datasource()
        self.service_id = self.create_service(self.datasource_id)

    def publish(self, label, ctx=OWNER, force=False, description=None):
        with self.session() as session:
            request = PublishRequest(version=label, force_publish=force, version_description=description)
            return lifecycle_service.publish(session, ctx, self.service_id, request)

    def versions(self):
        with self.session() as session:
            return session.exec(
                select(ApiServiceVersion)
                .where(ApiServiceVersion.api_service_id == self.service_id)
                .order_by(ApiServiceVersion.id)
            ).all()

    def update_sql(self, sql):
        with self.session() as session:
            lifecycle_service.update_api_service(session, OWNER, self.service_id, ApiServiceUpdate(sql_content=sql))

    def unpublish(self, ctx=OWNER):
        with self.session() as session:
            return lifecycle_service.unpublish(session, ctx, self.service_id)

    def test_new_service_is_draft(self):
        with self.session() as session:
            service = lifecycle_service.get_api_service(session, OWNER, self.service_id)
            self.assertEqual(service.status, ApiStatus.DRAFT.value)
            self.assertEqual(service.method, "GET")
            self.assertEqual(service.created_by, OWNER.user_id)
            self.assertEqual(service.tenant_id, OWNER.tenant_id)
            self.assertEqual(service.cache_duration, 300)

    def test_publish_flips_active_version(self):
        v1 = self.publish("v1")
        self.assertTrue(v1.is_active)

        self.publish("v2")
        active = {v.version: v.is_active for v in self.versions()}
        self.assertEqual(active, {"v1": False, "v2": True})

        with self.session() as session:
            self.assertEqual(session.get(ApiService, self.service_id).status, ApiStatus.PUBLISHED.value)
            self.assertEqual(lifecycle_service.get_active_version(session, self.service_id).version, "v2")

    def test_version_is_snapshot_of_draft(self):
        version = self.publish("v1", description="first")
        self.assertEqual(version.sql_content, "SELECT id, name FROM users WHERE city = ${city} ORDER BY id")
        self.assertEqual(version.datasource_id, self.datasource_id)
        self.assertEqual(version.version_description, "first")
        self.assertIsNotNone(version.published_at)

    def test_duplicate_label_rejected_without_force(self):
        self.publish("v1")
        with self.assertRaises(DuplicateVersionLabel) as ctx:
            self.publish("v1")
        self.assertEqual(ctx.exception.version, "v1")

    def test_force_publish_supersedes_label(self):
        self.publish("v1")
        self.publish("v2")
        self.unpublish()
        self.update_sql("SELECT id FROM users")

        version = self.publish("v1", force=True)
        self.assertTrue(version.is_active)
        self.assertEqual(version.sql_content, "SELECT id FROM users")
        versions = self.versions()
        self.assertEqual([v.version for v in versions], ["v1", "v2"])
        self.assertEqual([v.is_active for v in versions], [True, False])

    def test_rejected_query_is_not_published(self):
        self.update_sql("SELECT * FROM users; DROP TABLE users")
        with self.assertRaises(QueryRejected):
            self.publish("v1")
        self.assertEqual(self.versions(), [])

        with self.session() as session:
            self.assertEqual(session.get(ApiService, self.service_id).status, ApiStatus.DRAFT.value)
            failed = session.exec(
                select(AuditLog).where(AuditLog.action == "publish", AuditLog.outcome == "failed")
            ).all()
        self.assertEqual(len(failed), 1)
        self.assertIn("DROP TABLE", failed[0].error_message)

    def test_blank_label_rejected(self):
        with self.assertRaises(InvalidState):
            self.publish("  ")

    def test_only_owner_publishes(self):
        with self.assertRaises(PermissionDenied):
            self.publish("v1", ctx=COLLEAGUE)
        with self.assertRaises(NotFound):
            self.publish("v1", ctx=OUTSIDER)

    def test_unpublish(self):
        self.publish("v1")
        version = self.unpublish()
        self.assertFalse(version.is_active)
        self.assertIsNotNone(version.unpublished_at)

        with self.session() as session:
            self.assertEqual(session.get(ApiService, self.service_id).status, ApiStatus.DRAFT.value)
            with self.assertRaises(NoActiveVersion):
                lifecycle_service.get_active_version(session, self.service_id)

        with self.assertRaises(InvalidState):
            self.unpublish()

    def test_published_draft_is_read_only(self):
        self.publish("v1")
        with self.assertRaises(InvalidState):
            self.update_sql("SELECT 1")
        with self.session() as session:
            with self.assertRaises(InvalidState):
                lifecycle_service.delete_api_service(session, OWNER, self.service_id)

    def test_update_requires_owner(self):
        with self.session() as session:
            with self.assertRaises(PermissionDenied):
                lifecycle_service.update_api_service(
                    session, COLLEAGUE, self.service_id, ApiServiceUpdate(description="x")
                )

    def test_delete_keeps_audit_trail(self):
        self.publish("v1")
        self.unpublish()
        with self.session() as session:
            lifecycle_service.delete_api_service(session, OWNER, self.service_id)
        self.assertEqual(self.versions(), [])
        self.assertNotIn(self.service_id, lifecycle_service._service_locks)
        with self.session() as session:
            self.assertIsNone(session.get(ApiService, self.service_id))
            actions = {log.action for log in session.exec(select(AuditLog)).all()}
        self.assertTrue({"create", "publish", "unpublish", "delete"} <= actions)

    def test_duplicate_name_and_route(self):
        with self.assertRaises(InvalidState):
            self.create_service(self.datasource_id, path="/other")
        with self.assertRaises(InvalidState):
            self.create_service(self.datasource_id, name="other")
        other = self.create_service(self.datasource_id, name="other", path="/users", method="post")
        with self.session() as session:
            self.assertEqual(session.get(ApiService, other).method, "POST")

    def test_list_services_is_tenant_scoped(self):
        with self.session() as session:
            self.assertEqual(lifecycle_service.list_api_services(session, OWNER)["total"], 1)
            self.assertEqual(lifecycle_service.list_api_services(session, OUTSIDER)["total"], 0)
            self.assertEqual(lifecycle_service.list_api_services(session, COLLEAGUE, owned_only=True)["total"], 0)

    def test_list_versions(self):
        for label in ("v1", "v2", "v3"):
            self.publish(label)
        with self.session() as session:
            page = lifecycle_service.list_versions(session, OWNER, self.service_id, skip=0, limit=2)
        self.assertEqual(page["total"], 3)
        self.assertEqual(len(page["items"]), 2)

    def test_resolve_published(self):
        self.publish("v1")
        self.unpublish()
        self.update_sql("SELECT name FROM users")
        self.publish("v2")
        with self.session() as session:
            self.assertEqual(
                lifecycle_service.resolve_published(session, COLLEAGUE, self.service_id).sql_content,
                "SELECT name FROM users",
            )
            resolved = lifecycle_service.resolve_published(session, COLLEAGUE, self.service_id, "v1")
            self.assertEqual(resolved.version, "v1")
            with self.assertRaises(VersionNotFound):
                lifecycle_service.resolve_published(session, OWNER, self.service_id, "v9")
            with self.assertRaises(PermissionDenied):
                lifecycle_service.resolve_draft(session, COLLEAGUE, self.service_id)

    def test_concurrent_publishes_leave_one_active(self):
        errors = []

        def worker(label):
            try:
                self.publish(label)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(f"v{i}",)) for i in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(errors, [])
        versions = self.versions()
        self.assertEqual(len(versions), 6)
        self.assertEqual(sum(1 for v in versions if v.is_active), 1)


class TestCompareVersions(ServiceTestCase):
    def setUp(self):
        super().setUp()
        self.datasource_id = self.create_datasource()
        self.service_id = self.create_service(self.datasource_id)
        with self.session() as session:
            lifecycle_service.publish(session, OWNER, self.service_id, PublishRequest(version="v1"))
            lifecycle_service.publish(session, OWNER, self.service_id, PublishRequest(version="v1-copy"))
            lifecycle_service.unpublish(session, OWNER, self.service_id)
            lifecycle_service.update_api_service(
                session, OWNER, self.service_id, ApiServiceUpdate(sql_content="SELECT name FROM users")
            )
            lifecycle_service.publish(session, OWNER, self.service_id, PublishRequest(version="v2"))

    def compare(self, source, target):
        with self.session() as session:
            return lifecycle_service.compare_versions(session, OWNER, self.service_id, source, target)

    def test_identical_snapshots(self):
        comparison = self.compare("v1", "v1-copy")
        self.assertEqual(comparison.changed, [])
        self.assertEqual(len(comparison.differences), len(lifecycle_service.COMPARED_FIELDS))

    def test_sql_only_change(self):
        changed = self.compare("v1", "v2").changed
        self.assertEqual(len(changed), 1)
        self.assertEqual(changed[0].field_name, "sql_content")
        self.assertEqual(changed[0].difference_type, DifferenceType.MODIFIED)
        self.assertEqual(changed[0].target_value, "SELECT name FROM users")

    def test_datasource_only_change(self):
        other_datasource = self.create_datasource(name="replica")
        with self.session() as session:
            lifecycle_service.unpublish(session, OWNER, self.service_id)
            lifecycle_service.update_api_service(
                session, OWNER, self.service_id, ApiServiceUpdate(datasource_id=other_datasource)
            )
            lifecycle_service.publish(session, OWNER, self.service_id, PublishRequest(version="v3"))

        changed = self.compare("v2", "v3").changed
        self.assertEqual([d.field_name for d in changed], ["datasource_id"])
        self.assertEqual(changed[0].source_value, self.datasource_id)
        self.assertEqual(changed[0].target_value, other_datasource)

    def test_unknown_version(self):
        with self.assertRaises(VersionNotFound):
            self.compare("v1", "v7")

    def test_compare_is_audited(self):
        self.compare("v1", "v2")
        with self.session() as session:
            logs = session.exec(select(AuditLog).where(AuditLog.action == "version_compare")).all()
        self.assertEqual(len(logs), 1)
        self.assertIn("sql_content", logs[0].details)

    def test_null_handling(self):
        cases = [
            (None, None, DifferenceType.UNCHANGED),
            (None, "x", DifferenceType.ADDED),
            ("x", None, DifferenceType.REMOVED),
            ("x", "y", DifferenceType.MODIFIED),
            (5, 5, DifferenceType.UNCHANGED),
        ]
        for source, target, expected in cases:
            with self.subTest(source=source, target=target):
                self.assertEqual(lifecycle_service.compare_values(source, target), expected)


if __name__ == "__main__":
    unittest.main()
