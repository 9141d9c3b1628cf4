import unittest

from autoapi.datasource.types import Category, list_descriptors
from autoapi.datasource.validation import validate_datasource_request, validate_query

RELATIONAL_TYPES = [d.name for d in list_descriptors(Category.RELATIONAL)]


def mysql_payload(**overrides):
    payload = {
        "name": "orders",
        "type": "mysql",
        "host": "db.internal",
        "port": 3306,
        "database": "shop",
        "username": "reader",
        "password": "secret",
        "min_pool_size": 1,
        "max_pool_size": 10,
        "connection_timeout": 30.0,
        "idle_timeout": 600.0,
        "max_lifetime": 1800.0,
    }
    payload.update(overrides)
    return payload


class TestValidateQuery(unittest.TestCase):
    def test_destructive_statements_rejected_for_every_type(self):
        for descriptor in list_descriptors():
            for text in ("DROP TABLE users", "SELECT * FROM x; DELETE FROM y"):
                with self.subTest(type=descriptor.name, text=text):
                    self.assertFalse(validate_query(text, descriptor.name).valid)

    def test_parameterized_select_accepted_for_relational_types(self):
        for ds_type in RELATIONAL_TYPES:
            with self.subTest(type=ds_type):
                result = validate_query("SELECT * FROM users WHERE id = ${id}", ds_type)
                self.assertTrue(result.valid, result.errors)

    def test_keywords_are_case_insensitive(self):
        result = validate_query("select * from t; drop table t", "mysql")
        self.assertFalse(result.valid)
        self.assertIn("Query contains forbidden keyword: DROP TABLE", result.errors)

    def test_blank_query_rejected(self):
        self.assertFalse(validate_query("   ", "mysql").valid)
        self.assertFalse(validate_query(None, "mysql").valid)

    def test_relational_requires_select(self):
        result = validate_query("  show tables", "postgresql")
        self.assertFalse(result.valid)
        self.assertIn("must be SELECT", result.error_message)

    def test_update_keyword_matches_inside_identifiers(self):
        # Known false positive of the substring deny-list.
        self.assertFalse(validate_query("SELECT last_update FROM t", "mysql").valid)
        self.assertTrue(validate_query("SELECT last_updated FROM t", "mysql").valid)

    def test_document_store_rejects_delete_verbs(self):
        self.assertTrue(validate_query("{collection: users, filter: {age: 3}}", "mongodb").valid)
        self.assertFalse(validate_query("{collection: users, op: deleteMany}", "mongodb").valid)
        self.assertFalse(validate_query("{collection: users, op: Remove}", "mongodb").valid)

    def test_search_and_http_require_get_or_post(self):
        self.assertTrue(validate_query("POST /orders/_search", "elasticsearch").valid)
        self.assertTrue(validate_query("  get /api/users", "http_api").valid)
        self.assertFalse(validate_query("PUT /orders/_doc/1", "elasticsearch").valid)
        self.assertFalse(validate_query("DELETE /api/users/1", "https_api").valid)

    def test_time_series_has_no_shape_rule(self):
        self.assertTrue(validate_query("SHOW STABLES", "tdengine").valid)


class TestValidateDataSourceRequest(unittest.TestCase):
    def test_valid_payload(self):
        result = validate_datasource_request(mysql_payload())
        self.assertTrue(result.valid, result.errors)

    def test_name_and_type(self):
        self.assertFalse(validate_datasource_request(mysql_payload(name="")).valid)
        self.assertFalse(validate_datasource_request(mysql_payload(name="x" * 101)).valid)
        result = validate_datasource_request(mysql_payload(type="db2"))
        self.assertIn("Unsupported data source type: db2", result.errors)

    def test_host_port_and_database(self):
        self.assertFalse(validate_datasource_request(mysql_payload(host="bad host!")).valid)
        self.assertFalse(validate_datasource_request(mysql_payload(port=0)).valid)
        self.assertFalse(validate_datasource_request(mysql_payload(port=70000)).valid)
        self.assertFalse(validate_datasource_request(mysql_payload(database="1shop")).valid)

    def test_credentials_required_for_relational(self):
        result = validate_datasource_request(mysql_payload(username=None, password=None))
        self.assertEqual(len(result.errors), 2)

    def test_embedded_sqlite_skips_network_checks(self):
        payload = {"name": "local", "type": "sqlite", "database": "/tmp/local.db"}
        result = validate_datasource_request(payload)
        self.assertTrue(result.valid, result.errors)

    def test_http_needs_no_credentials(self):
        payload = {"name": "crm", "type": "https_api", "host": "crm.example.com", "port": 443}
        self.assertTrue(validate_datasource_request(payload).valid)

    def test_pool_limits(self):
        cases = [
            {"max_pool_size": 0},
            {"max_pool_size": 101},
            {"min_pool_size": -1},
            {"min_pool_size": 5, "max_pool_size": 2},
            {"connection_timeout": 0.5},
            {"idle_timeout": 30.0},
            {"max_lifetime": 300.0},
        ]
        for overrides in cases:
            with self.subTest(**overrides):
                self.assertFalse(validate_datasource_request(mysql_payload(**overrides)).valid)


if __name__ == "__main__":
    unittest.main()
