"""
preprocessing_pipeline.py
==========================
Data-quality gate between the event source and the session builder.

Orchestrates 4 checks on raw GA4 export events:
  1. Schema validation   - required top-level fields present
  2. Datatype coercion   - event_timestamp (string INT64) to int
  3. Session scope       - the session parameter (ga_session_id) is set
  4. Duplicate removal   - event identity fingerprint deduplication

Returns: (clean_events, error_rows, dq_report)
  clean_events - events that passed all checks
  error_rows   - events that failed, each with an added '_error_reason'
                 field describing why it was rejected
  dq_report    - dict with check results and summary stats
"""
import logging

from config.defaults import DEFAULT_SESSION_PARAM
from preprocessing.datatype_validator import DatatypeValidator
from preprocessing.duplicate_checker import DuplicateChecker
from preprocessing.param_extractor import get_event_param
from preprocessing.schema_validator import SchemaValidator

logger = logging.getLogger(__name__)


class EventPreprocessingPipeline:

    def __init__(self, cfg):
        self.session_param = cfg.get("session.session_param", default=DEFAULT_SESSION_PARAM)
        self.schema        = SchemaValidator(cfg)
        self.datatypes     = DatatypeValidator(cfg)
        self.duplicates    = DuplicateChecker(cfg)

    def run(self, events: list) -> tuple:
        """
        Run all preprocessing checks on raw export events.

        Returns:
            (clean_events, error_rows, dq_report)

        Raises:
            SchemaValidationError: data_quality.fail_on_schema_error is set
                and an event lacks a required field.
        """
        logger.info("=== Preprocessing Pipeline Start. Events: %d ===", len(events))
        total      = len(events)
        dq_report  = {"checks": []}
        error_rows = []

        # -- Step 1: Schema validation ----------------------------------
        events, rejected, result = self.schema.validate(events)
        error_rows.extend(rejected)
        dq_report["checks"].append(result)

        # -- Step 2: Datatype coercion ----------------------------------
        events, rejected, result = self.datatypes.validate_and_coerce(events)
        error_rows.extend(rejected)
        dq_report["checks"].append(result)

        # -- Step 3: Session scope --------------------------------------
        # No session param means no session identity; not a fatal error.
        scoped = []
        for event in events:
            if get_event_param(event, self.session_param, "int") is None:
                error_row = dict(event)
                error_row["_error_reason"] = f"missing_session_param: {self.session_param}"
                error_rows.append(error_row)
            else:
                scoped.append(event)
        unscoped = len(events) - len(scoped)
        dq_report["checks"].append({
            "check":         "session_scope",
            "passed":        True,
            "session_param": self.session_param,
            "rejected":      unscoped,
        })
        if unscoped:
            logger.warning("Session scope: %d event(s) without '%s' rejected.", unscoped, self.session_param)
        else:
            logger.info("Session scope PASSED. Every event carries '%s'.", self.session_param)
        events = scoped

        # -- Step 4: Duplicate removal ----------------------------------
        events, rejected, result = self.duplicates.check_and_remove(events)
        error_rows.extend(rejected)
        dq_report["checks"].append(result)

        # -- Summary ----------------------------------------------------
        dq_report["overall_passed"] = all(c.get("passed", True) for c in dq_report["checks"])
        dq_report["rows_in"]        = total
        dq_report["rows_out"]       = len(events)
        dq_report["error_count"]    = len(error_rows)

        logger.info(
            "=== Preprocessing Complete. Events in: %d | Clean: %d | "
            "Errors: %d | All checks passed: %s ===",
            total, len(events), len(error_rows), dq_report["overall_passed"]
        )
        return events, error_rows, dq_report
