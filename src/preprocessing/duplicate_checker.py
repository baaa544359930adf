"""
duplicate_checker.py
====================
Detects and removes duplicate export events using the event identity
fingerprint (timestamp + event_name + user_pseudo_id + engagement time).
Streaming and intraday exports can deliver the same hit twice.
Duplicates are logged and removed; the pipeline continues.
"""
import logging

import pandas as pd

from processing.identity import derive_event_id

logger = logging.getLogger(__name__)


class DuplicateChecker:

    def __init__(self, cfg):
        self.timestamp_param = cfg.get("session.timestamp_param")

    def check_and_remove(self, events: list) -> tuple:
        """
        Identify and remove duplicate events, keeping the first occurrence.

        Returns:
            (deduplicated_events, duplicate_rows, result_dict)
        """
        before = len(events)
        if not events:
            return [], [], {"check": "duplicate_check", "passed": True,
                            "duplicate_count": 0, "rows_before": 0, "rows_after": 0}

        ids = pd.Series([derive_event_id(e, self.timestamp_param) for e in events])
        is_dupe = ids.duplicated(keep="first").tolist()

        deduped, dupes = [], []
        for event, event_id, dupe in zip(events, ids.tolist(), is_dupe):
            if not dupe:
                deduped.append(event)
                continue
            error_row = dict(event)
            error_row["_error_reason"] = f"duplicate_event: event_id={event_id}"
            dupes.append(error_row)

        result = {
            "check":           "duplicate_check",
            "passed":          True,          # always passes: dupes are removed, not fatal
            "key":             "event_id",
            "rows_before":     before,
            "rows_after":      len(deduped),
            "duplicate_count": len(dupes),
        }

        if dupes:
            logger.warning(
                "Duplicate check: %d duplicate event(s) removed on event_id. "
                "Rows: %d -> %d", len(dupes), before, len(deduped)
            )
        else:
            logger.info("Duplicate check PASSED. No duplicate events found.")

        return deduped, dupes, result
