"""
test_identity.py
================
Unit tests for event / session fingerprints.
"""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parents[2] / "src"))

from processing.identity import derive_event_id, derive_session_id, event_timestamp, fingerprint


def _event(ts="1709316000000000", name="page_view", user="111.222", engagement=None,
           ga_session_id="1709316000", extra_params=()):
    params = []
    if ga_session_id is not None:
        params.append({"key": "ga_session_id", "value": {"int_value": ga_session_id}})
    if engagement is not None:
        params.append({"key": "engagement_time_msec", "value": {"int_value": engagement}})
    params.extend(extra_params)
    return {"event_timestamp": ts, "event_name": name, "user_pseudo_id": user, "event_params": params}


class TestFingerprint(unittest.TestCase):

    def test_deterministic(self):
        self.assertEqual(fingerprint(1, "a", None), fingerprint(1, "a", None))

    def test_fits_signed_int64(self):
        value = fingerprint("x")
        self.assertGreaterEqual(value, -(2 ** 63))
        self.assertLess(value, 2 ** 63)

    def test_parts_are_separated(self):
        self.assertNotEqual(fingerprint("1", "23"), fingerprint("12", "3"))

    def test_none_hashes_like_empty_string(self):
        self.assertEqual(fingerprint(None, "a"), fingerprint("", "a"))


class TestEventIdentity(unittest.TestCase):

    def test_same_event_same_id(self):
        self.assertEqual(derive_event_id(_event()), derive_event_id(_event()))

    def test_string_and_int_timestamp_agree(self):
        self.assertEqual(
            derive_event_id(_event(ts="1709316000000000")),
            derive_event_id(_event(ts=1709316000000000)),
        )

    def test_timestamp_changes_id(self):
        self.assertNotEqual(derive_event_id(_event()), derive_event_id(_event(ts="1709316000000001")))

    def test_event_name_changes_id(self):
        self.assertNotEqual(derive_event_id(_event()), derive_event_id(_event(name="scroll")))

    def test_user_changes_id(self):
        self.assertNotEqual(derive_event_id(_event()), derive_event_id(_event(user="111.223")))

    def test_engagement_changes_id(self):
        self.assertNotEqual(derive_event_id(_event()), derive_event_id(_event(engagement="10")))

    def test_missing_engagement_counts_as_zero(self):
        self.assertEqual(derive_event_id(_event()), derive_event_id(_event(engagement="0")))

    def test_session_param_does_not_affect_event_id(self):
        self.assertEqual(derive_event_id(_event()), derive_event_id(_event(ga_session_id="42")))

    def test_custom_timestamp_param_wins(self):
        custom = {"key": "client_ts", "value": {"int_value": "1709316000000999"}}
        event = _event(extra_params=[custom])
        self.assertEqual(event_timestamp(event, "client_ts"), 1709316000000999)
        self.assertEqual(event_timestamp(_event(), "client_ts"), 1709316000000000)


class TestSessionIdentity(unittest.TestCase):

    def test_events_of_one_session_share_id(self):
        first = _event(ts="1709316000000000", name="session_start")
        second = _event(ts="1709316060000000", name="page_view", engagement="1200")
        self.assertEqual(derive_session_id(first), derive_session_id(second))

    def test_user_changes_session_id(self):
        self.assertNotEqual(derive_session_id(_event()), derive_session_id(_event(user="999.1")))

    def test_session_param_changes_session_id(self):
        self.assertNotEqual(derive_session_id(_event()), derive_session_id(_event(ga_session_id="1")))

    def test_missing_session_param_is_none(self):
        self.assertIsNone(derive_session_id(_event(ga_session_id=None)))

    def test_custom_session_param(self):
        custom = {"key": "visit_id", "value": {"int_value": "7"}}
        event = _event(ga_session_id=None, extra_params=[custom])
        self.assertEqual(derive_session_id(event, "visit_id"), fingerprint(7, "111.222"))


if __name__ == "__main__":
    unittest.main(verbosity=2)
