import json
import unittest
from unittest import mock

import requests

from autoapi.datasource.elasticsearch_connection import ElasticsearchConnection, flatten_mapping
from autoapi.datasource.errors import ExecutionError
from autoapi.datasource.http_connection import HttpConnection, parse_request_text


def make_response(status=200, body=None, headers=None):
    response = requests.Response()
    response.status_code = status
    if body is None:
        response._content = b""
    elif isinstance(body, (dict, list)):
        response._content = json.dumps(body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    else:
        response._content = str(body).encode("utf-8")
    response.headers.update(headers or {})
    return response


class TestParseRequestText(unittest.TestCase):
    def test_request_line_and_json_body(self):
        spec = parse_request_text('POST /search\n{"name": "alice"}')
        self.assertEqual(spec.method, "POST")
        self.assertEqual(spec.path, "/search")
        self.assertEqual(spec.body, {"name": "alice"})

    def test_rendered_single_quotes_and_null(self):
        spec = parse_request_text("POST /search\n{name: 'alice', city: NULL, age: 30}")
        self.assertEqual(spec.body, {"name": "alice", "city": None, "age": 30})

    def test_bare_path_uses_default_method(self):
        spec = parse_request_text("/users?active=true")
        self.assertEqual((spec.method, spec.path, spec.body), ("GET", "/users?active=true", None))

    def test_lowercase_method(self):
        self.assertEqual(parse_request_text("get users").path, "/users")


class TestHttpConnection(unittest.TestCase):
    def setUp(self):
        self.session = requests.Session()
        self.request = mock.patch.object(self.session, "request").start()
        self.addCleanup(mock.patch.stopall)
        self.connection = HttpConnection(
            "https://crm.example.com:443/", username="api", password="pw", session=self.session
        )

    def test_base_url_and_basic_auth(self):
        self.assertEqual(self.connection.base_url, "https://crm.example.com:443")
        info = self.connection.get_connection_info()
        self.assertEqual(info.properties["auth"], "basic")

    def test_query_flattens_json_list(self):
        self.request.return_value = make_response(
            body=[{"id": 1, "address": {"city": "Paris"}}, {"id": 2, "address": {"city": None}}]
        )
        result = self.connection.execute_query("GET /customers")
        self.assertTrue(result.ok)
        self.assertEqual(result.column_names, ["id", "address.city"])
        self.assertEqual(result.rows[0], {"id": 1, "address.city": "Paris"})
        self.assertIsNone(result.rows[1]["address.city"])
        self.request.assert_called_once_with("GET", "https://crm.example.com:443/customers", timeout=30.0)

    def test_scalar_and_object_payloads(self):
        self.request.return_value = make_response(body={"total": 3})
        self.assertEqual(self.connection.execute_query("GET /stats").rows, [{"total": 3}])

        self.request.return_value = make_response(body="plain text")
        self.assertEqual(self.connection.execute_query("GET /ping").rows, [{"value": "plain text"}])

    def test_post_body_sent_as_json(self):
        self.request.return_value = make_response(body=[])
        self.connection.execute_query('POST /search\n{"city": "Paris"}')
        _, kwargs = self.request.call_args
        self.assertEqual(kwargs["json"], {"city": "Paris"})

    def test_http_error_is_failure(self):
        self.request.return_value = make_response(status=500, body="boom")
        result = self.connection.execute_query("GET /customers")
        self.assertFalse(result.ok)
        self.assertIn("HTTP 500", result.error)

    def test_network_error_is_failure(self):
        self.request.side_effect = requests.ConnectionError("refused")
        result = self.connection.execute_query("GET /customers")
        self.assertFalse(result.ok)
        self.assertFalse(self.connection.is_valid())

    def test_is_valid_falls_back_to_get(self):
        self.request.side_effect = [make_response(status=405), make_response(status=200, body="ok")]
        self.assertTrue(self.connection.is_valid())

    def test_update_reads_affected_count(self):
        self.request.return_value = make_response(body={"affected": 4})
        outcome = self.connection.execute_update("/customers/bulk\n{ids: [1, 2]}")
        self.assertEqual(outcome.affected_count, 4)
        self.assertEqual(self.request.call_args[0][0], "POST")

    def test_list_tables_tries_discovery_paths(self):
        def respond(method, url, **kwargs):
            return make_response(status=200 if url.endswith("/openapi.json") else 404, body="x")

        self.request.side_effect = respond
        self.assertEqual([t.name for t in self.connection.list_tables()], ["/openapi.json"])

        self.request.side_effect = lambda method, url, **kwargs: make_response(status=404, body="x")
        self.assertEqual([t.name for t in self.connection.list_tables()], ["/"])

    def test_table_schema_from_allow_header(self):
        self.request.return_value = make_response(headers={"Allow": "GET, POST"})
        schema = self.connection.get_table_schema("/customers")
        self.assertEqual([c.name for c in schema.columns], ["GET", "POST"])


class TestElasticsearchConnection(unittest.TestCase):
    def setUp(self):
        self.session = requests.Session()
        self.request = mock.patch.object(self.session, "request").start()
        self.addCleanup(mock.patch.stopall)
        self.connection = ElasticsearchConnection("http://es:9200", session=self.session)

    def test_search_hits_become_rows(self):
        self.request.return_value = make_response(
            body={
                "hits": {
                    "total": {"value": 25, "relation": "eq"},
                    "hits": [{"_id": "a1", "_index": "orders", "_source": {"amount": 10}}],
                }
            }
        )
        result = self.connection.execute_query('POST /orders/_search\n{"query": {"match_all": {}}}')
        self.assertEqual(result.rows, [{"amount": 10, "_id": "a1", "_index": "orders"}])
        self.assertEqual(result.row_count, 25)

    def test_indices_skip_hidden(self):
        self.request.return_value = make_response(body=[{"index": "orders"}, {"index": ".kibana"}])
        self.assertEqual([t.name for t in self.connection.list_tables()], ["orders"])

    def test_indices_failure(self):
        self.request.return_value = make_response(status=503, body="down")
        with self.assertRaises(ExecutionError):
            self.connection.list_tables()

    def test_mapping_flattened(self):
        self.request.return_value = make_response(
            body={
                "orders": {
                    "mappings": {
                        "properties": {
                            "amount": {"type": "double"},
                            "customer": {"properties": {"name": {"type": "keyword"}}},
                        }
                    }
                }
            }
        )
        schema = self.connection.get_table_schema("orders")
        self.assertEqual([(c.name, c.type) for c in schema.columns], [("amount", "double"), ("customer.name", "keyword")])

    def test_flatten_mapping_default_type(self):
        self.assertEqual(flatten_mapping({"tags": {}})[0].type, "object")


if __name__ == "__main__":
    unittest.main()
