import json
import unittest

from autoapi.app.core.errors import InvalidState, PermissionDenied, ValidationFailed
from autoapi.app.models.api_service import PublishRequest, TableSelection, TableSelectionRequest
from autoapi.app.services import lifecycle_service, table_selection_service
from autoapi.app.services.table_selection_service import generate_sql_template
from autoapi.tests.support import COLLEAGUE, OWNER, ServiceTestCase


class TestGenerateSqlTemplate(unittest.TestCase):
    def test_empty_selection(self):
        self.assertEqual(generate_sql_template([]), "SELECT * FROM your_table")

    def test_single_table_without_columns(self):
        sql = generate_sql_template([TableSelection(api_service_id=1, table_name="users", is_primary=True)])
        self.assertEqual(
            sql,
            "SELECT *\nFROM users\nWHERE 1=1\n  -- Add query conditions here using ${paramName} placeholders",
        )

    def test_join_with_aliases_and_qualified_names(self):
        selections = [
            TableSelection(
                api_service_id=1,
                schema_name="sales",
                table_name="orders",
                table_alias="o",
                selected_columns=json.dumps(["id", "total"]),
                join_type="LEFT",
                join_condition="o.user_id = u.id",
                sort_order=1,
            ),
            TableSelection(
                api_service_id=1,
                database_name="crm",
                table_name="users",
                table_alias="u",
                selected_columns=json.dumps(["name"]),
                is_primary=True,
                sort_order=0,
            ),
        ]
        sql = generate_sql_template(selections)
        self.assertEqual(
            sql.splitlines(),
            [
                "SELECT u.name,",
                "       o.id,",
                "       o.total",
                "FROM crm.users AS u",
                "LEFT JOIN sales.orders AS o ON o.user_id = u.id",
                "WHERE 1=1",
                "  -- Add query conditions here using ${paramName} placeholders",
            ],
        )


class TestTableSelections(ServiceTestCase):
    def setUp(self):
        super().setUp()
        self.service_id = self.create_service(self.create_datasource())

    def save(self, requests, ctx=OWNER):
        with self.session() as session:
            return table_selection_service.save_table_selections(session, ctx, self.service_id, requests)

    def test_replace_and_defaults(self):
        self.save([TableSelectionRequest(table_name="old")])
        saved = self.save(
            [
                TableSelectionRequest(table_name="users", table_alias="u", selected_columns=["id", "name"]),
                TableSelectionRequest(table_name="orders", join_type="left", join_condition="orders.user_id = u.id"),
            ]
        )
        self.assertEqual([s.table_name for s in saved], ["users", "orders"])
        self.assertEqual([s.sort_order for s in saved], [0, 1])
        self.assertEqual([s.is_primary for s in saved], [True, False])
        self.assertEqual(saved[1].join_type, "LEFT")

        with self.session() as session:
            listed = table_selection_service.list_table_selections(session, OWNER, self.service_id)
            self.assertEqual([s.table_name for s in listed], ["users", "orders"])
            sql = table_selection_service.generate_service_template(session, OWNER, self.service_id)
        self.assertTrue(sql.startswith("SELECT u.id,\n       u.name\nFROM users AS u\nLEFT JOIN orders"))

    def test_single_primary(self):
        with self.assertRaises(ValidationFailed):
            self.save(
                [
                    TableSelectionRequest(table_name="a", is_primary=True),
                    TableSelectionRequest(table_name="b", is_primary=True),
                ]
            )

    def test_unknown_join_type(self):
        with self.assertRaises(ValidationFailed):
            self.save([TableSelectionRequest(table_name="a"), TableSelectionRequest(table_name="b", join_type="CROSS")])

    def test_owner_and_draft_only(self):
        with self.assertRaises(PermissionDenied):
            self.save([TableSelectionRequest(table_name="users")], ctx=COLLEAGUE)
        with self.session() as session:
            lifecycle_service.publish(session, OWNER, self.service_id, PublishRequest(version="v1"))
        with self.assertRaises(InvalidState):
            self.save([TableSelectionRequest(table_name="users")])


if __name__ == "__main__":
    unittest.main()
