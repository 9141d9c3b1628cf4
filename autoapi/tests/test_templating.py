import unittest
from decimal import Decimal

from autoapi.datasource.templating import (
    extract_placeholders,
    missing_parameters,
    render_template,
    render_value,
)


class TestTemplating(unittest.TestCase):
    def test_placeholders_in_first_appearance_order(self):
        text = "SELECT * FROM t WHERE a = ${b} AND c = ${a} OR d = ${b}"
        self.assertEqual(extract_placeholders(text), ["b", "a"])

    def test_numbers_render_bare_and_strings_quoted(self):
        rendered = render_template(
            "SELECT * FROM users WHERE id = ${id} AND name = ${name} AND score > ${score}",
            {"id": 42, "name": "alice", "score": Decimal("1.5")},
        )
        self.assertEqual(rendered, "SELECT * FROM users WHERE id = 42 AND name = 'alice' AND score > 1.5")

    def test_missing_parameter_renders_null(self):
        self.assertEqual(render_template("id = ${userId}", {}), "id = NULL")
        self.assertEqual(render_template("id = ${userId}", None), "id = NULL")

    def test_explicit_none_renders_null(self):
        self.assertEqual(render_template("id = ${userId}", {"userId": None}), "id = NULL")

    def test_booleans_render_as_keywords(self):
        self.assertEqual(render_value(True), "true")
        self.assertEqual(render_value(False), "false")

    def test_duplicate_placeholders_share_one_value(self):
        rendered = render_template("${x} + ${x}", {"x": 3})
        self.assertEqual(rendered, "3 + 3")

    def test_rendering_is_deterministic(self):
        template = "SELECT * FROM t WHERE a IN (${ids}) AND b = ${b}"
        params = {"ids": "1,2,3", "b": 7}
        self.assertEqual(render_template(template, params), render_template(template, params))

    def test_values_are_not_expanded_again(self):
        rendered = render_template("a = ${a}", {"a": "${b}", "b": 1})
        self.assertEqual(rendered, "a = '${b}'")

    def test_unterminated_placeholder_is_left_verbatim(self):
        self.assertEqual(render_template("a = ${a AND b = ${b}", {"b": 1}), "a = ${a AND b = 1")

    def test_quotes_are_not_escaped_by_default(self):
        self.assertEqual(render_value("O'Brien"), "'O'Brien'")

    def test_quotes_escaped_when_enabled(self):
        self.assertEqual(render_value("O'Brien", escape_quotes=True), "'O''Brien'")

    def test_missing_parameters(self):
        self.assertEqual(missing_parameters("${a} ${b} ${c}", {"b": 1}), ["a", "c"])


if __name__ == "__main__":
    unittest.main()
