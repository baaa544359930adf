"""
schema_validator.py
===================
Validates that every raw export event carries the required top-level fields.
Events missing any of them cannot receive an event identity and are routed
to the error rows. Raises SchemaValidationError instead when
data_quality.fail_on_schema_error is set.
Config-driven: reads input.required_fields from config.yaml
"""
import logging
from typing import List

logger = logging.getLogger(__name__)

DEFAULT_REQUIRED_FIELDS = ["event_timestamp", "event_name", "user_pseudo_id"]


class SchemaValidationError(Exception):
    pass


class SchemaValidator:

    def __init__(self, cfg):
        self.required  = cfg.get("input.required_fields", default=DEFAULT_REQUIRED_FIELDS)
        self.fail_hard = cfg.get("data_quality.fail_on_schema_error", default=False)

    def missing_fields(self, event: dict) -> List[str]:
        return [f for f in self.required if event.get(f) in (None, "")]

    def validate(self, events: list) -> tuple:
        """
        Split events into those with and without the required fields.

        Returns:
            (valid_events, error_rows, result)
            error_rows carry an added '_error_reason'.

        Raises:
            SchemaValidationError if fail_hard=True and any event is incomplete.
        """
        valid, errors = [], []
        missing_counts = {}
        for event in events:
            missing = self.missing_fields(event)
            if not missing:
                valid.append(event)
                continue
            for field in missing:
                missing_counts[field] = missing_counts.get(field, 0) + 1
            error_row = dict(event)
            error_row["_error_reason"] = f"schema_error: missing fields {missing}"
            errors.append(error_row)

        passed = not errors
        result = {
            "check":           "schema_validation",
            "passed":          passed,
            "required_fields": list(self.required),
            "missing_counts":  missing_counts,
            "rejected":        len(errors),
        }

        if passed:
            logger.info("Schema validation PASSED. All %d required fields present.", len(self.required))
        else:
            msg = (f"Schema validation FAILED. {len(errors)} event(s) missing required "
                   f"fields: {missing_counts}")
            logger.error(msg)
            if self.fail_hard:
                raise SchemaValidationError(msg)
            logger.warning("fail_on_schema_error=false - continuing without the rejected events")

        return valid, errors, result
