"""
datatype_validator.py
=====================
Validates and coerces top-level event field types.
BigQuery JSON exports serialise INT64 (event_timestamp) as strings; those
are coerced here. Events that fail coercion are routed to the error rows
and the pipeline continues with the valid ones.
Config-driven: reads input.field_dtypes from config.yaml
"""
import logging

import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_FIELD_DTYPES = {"event_timestamp": "int"}


class DatatypeValidator:

    def __init__(self, cfg):
        self.dtypes = cfg.get("input.field_dtypes", default=DEFAULT_FIELD_DTYPES)

    def validate_and_coerce(self, events: list) -> tuple:
        """
        Coerce configured fields to their expected types.

        Returns:
            (coerced_events, error_rows, result_dict)
            coerced_events are copies; the input events are not mutated.
        """
        events = [dict(e) for e in events]
        bad_index    = {}
        coercion_log = {}

        for field, expected_type in self.dtypes.items():
            raw = pd.Series([e.get(field) for e in events], dtype="object")
            if expected_type in ("int", "float"):
                parsed = pd.to_numeric(raw, errors="coerce")
                bad = parsed.isna() & raw.notna()
            else:
                parsed, bad = raw, pd.Series(False, index=raw.index)

            for idx, value in parsed.items():
                if bad[idx] or pd.isna(value):
                    if bad[idx]:
                        bad_index.setdefault(idx, field)
                    continue
                if expected_type == "int":
                    events[idx][field] = int(value)
                elif expected_type == "float":
                    events[idx][field] = float(value)
                else:
                    events[idx][field] = str(value).strip()

            coercion_log[field] = {
                "expected_type":    expected_type,
                "bad_rows_dropped": int(bad.sum()),
            }
            if bad.any():
                logger.warning(
                    "Field '%s': %d event(s) failed type coercion to '%s' - rows dropped.",
                    field, int(bad.sum()), expected_type
                )
            else:
                logger.debug("Field '%s': all values valid as '%s'.", field, expected_type)

        clean, errors = [], []
        for idx, event in enumerate(events):
            if idx in bad_index:
                event["_error_reason"] = f"datatype_error: {bad_index[idx]}"
                errors.append(event)
            else:
                clean.append(event)

        result = {
            "check":            "datatype_validation",
            "passed":           True,
            "total_bad_rows":   len(errors),
            "coercion_details": coercion_log,
            "rows_out":         len(clean),
        }
        logger.info(
            "Datatype validation complete. %d bad rows dropped. %d rows remain.",
            len(errors), len(clean)
        )
        return clean, errors, result
