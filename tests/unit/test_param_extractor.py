"""
test_param_extractor.py
=======================
Unit tests for typed event_params / user_properties / query string access.
"""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parents[2] / "src"))

from config.config_loader import ConfigurationError
from preprocessing.param_extractor import (
    declared_column_name,
    extract_declared,
    get_column,
    get_event_param,
    get_param,
    get_query_param,
    get_url_host,
    get_user_property,
)

EVENT = {
    "event_name": "page_view",
    "event_params": [
        {"key": "page_location", "value": {"string_value": "https://shop.example.com/p?utm_source=news&x=1"}},
        {"key": "ga_session_id", "value": {"int_value": "1709316000"}},
        {"key": "price",         "value": {"double_value": 19.5}},
        {"key": "page_location", "value": {"string_value": "https://second.example.com/"}},
        {"key": "bad_int",       "value": {"int_value": "abc"}},
    ],
    "user_properties": [
        {"key": "plan", "value": {"string_value": "pro"}},
    ],
    "device": {"category": "desktop", "web_info": {"browser": "Chrome"}},
}


class TestGetParam(unittest.TestCase):

    def test_string_value(self):
        self.assertEqual(get_event_param(EVENT, "page_location"),
                         "https://shop.example.com/p?utm_source=news&x=1")

    def test_first_entry_wins_on_repeated_key(self):
        self.assertNotIn("second", get_event_param(EVENT, "page_location"))

    def test_int_from_json_string(self):
        self.assertEqual(get_event_param(EVENT, "ga_session_id", "int"), 1709316000)

    def test_unparseable_int_is_none(self):
        self.assertIsNone(get_event_param(EVENT, "bad_int", "int"))

    def test_missing_key_is_none(self):
        self.assertIsNone(get_event_param(EVENT, "nope", "string"))

    def test_wrong_type_is_none(self):
        self.assertIsNone(get_event_param(EVENT, "ga_session_id", "string"))

    def test_coalesce_returns_string(self):
        self.assertEqual(get_event_param(EVENT, "ga_session_id", "coalesce"), "1709316000")

    def test_coalesce_float(self):
        self.assertEqual(get_event_param(EVENT, "price", "coalesce_float"), 19.5)
        self.assertEqual(get_event_param(EVENT, "ga_session_id", "coalesce_float"), 1709316000.0)

    def test_type_is_case_insensitive(self):
        self.assertEqual(get_event_param(EVENT, "ga_session_id", "INT"), 1709316000)

    def test_unknown_type_raises(self):
        with self.assertRaises(ConfigurationError):
            get_event_param(EVENT, "page_location", "boolean")

    def test_plain_mapping_bag(self):
        self.assertEqual(get_param({"a": {"int_value": 5}}, "a", "int"), 5)

    def test_empty_bag(self):
        self.assertIsNone(get_param(None, "a"))
        self.assertIsNone(get_param([], "a"))

    def test_user_property(self):
        self.assertEqual(get_user_property(EVENT, "plan"), "pro")


class TestColumnsAndUrls(unittest.TestCase):

    def test_dotted_column(self):
        self.assertEqual(get_column(EVENT, "device.web_info.browser"), "Chrome")

    def test_missing_dotted_column(self):
        self.assertIsNone(get_column(EVENT, "device.web_info.version"))
        self.assertIsNone(get_column(EVENT, "event_name.sub"))

    def test_query_param(self):
        self.assertEqual(get_query_param("https://a.com/?utm_source=news&x=1", "utm_source"), "news")

    def test_query_param_case_insensitive_key(self):
        self.assertEqual(get_query_param("https://a.com/?GCLID=abc", "gclid"), "abc")

    def test_query_param_decoded(self):
        self.assertEqual(get_query_param("https://a.com/?utm_campaign=spring%20sale", "utm_campaign"),
                         "spring sale")

    def test_query_param_does_not_match_suffix(self):
        self.assertIsNone(get_query_param("https://a.com/?xutm_source=news", "utm_source"))

    def test_empty_query_value_is_none(self):
        self.assertIsNone(get_query_param("https://a.com/?utm_source=&x=1", "utm_source"))

    def test_query_param_no_url(self):
        self.assertIsNone(get_query_param(None, "utm_source"))

    def test_url_host_strips_www(self):
        self.assertEqual(get_url_host("https://www.Google.com/search?q=x"), "google.com")

    def test_url_host_empty(self):
        self.assertIsNone(get_url_host(""))
        self.assertIsNone(get_url_host("not a url"))


class TestDeclaredProjection(unittest.TestCase):

    def test_column_name_defaults(self):
        self.assertEqual(declared_column_name({"name": "device.category"}, "columns"), "device_category")
        self.assertEqual(declared_column_name({"name": "page_title"}, "event_params"), "page_title")

    def test_column_name_override(self):
        self.assertEqual(declared_column_name({"name": "device.web_info.browser", "columnName": "browser"},
                                              "columns"), "browser")

    def test_extract_each_kind(self):
        page = get_event_param(EVENT, "page_location")
        self.assertEqual(extract_declared(EVENT, [{"name": "device.category"}], "columns"),
                         {"device_category": "desktop"})
        self.assertEqual(extract_declared(EVENT, [{"name": "ga_session_id", "type": "int"}], "event_params"),
                         {"ga_session_id": 1709316000})
        self.assertEqual(extract_declared(EVENT, [{"name": "plan"}], "user_properties"), {"plan": "pro"})
        self.assertEqual(extract_declared(EVENT, [{"name": "x"}], "query_parameters", page), {"x": "1"})

    def test_unknown_kind_raises(self):
        with self.assertRaises(ConfigurationError):
            extract_declared(EVENT, [{"name": "x"}], "items")


if __name__ == "__main__":
    unittest.main(verbosity=2)
