"""
assertions.py
=============
Post-build checks on the session table, run before anything is written.

  - unique key:       at most one row per (date, session_id)
  - not-null columns: data_quality.session_not_null_columns

Uses pandas for the grouping / null counts.
"""
import logging

import pandas as pd

logger = logging.getLogger(__name__)


class AssertionFailure(Exception):
    pass


class SessionAssertions:

    def __init__(self, cfg, unique_key=("date", "session_id")):
        self.unique_key       = list(unique_key)
        self.not_null_columns = cfg.get("data_quality.session_not_null_columns",
                                        default=["date", "session_id"])
        self.fail_hard        = cfg.get("data_quality.fail_on_assertion", default=True)

    def run(self, sessions: list) -> dict:
        """
        Check the built session rows.

        Returns:
            dict with per-assertion results and overall pass/fail.

        Raises:
            AssertionFailure if fail_hard=True and any assertion fails.
        """
        df = pd.DataFrame(sessions, columns=None if sessions else self.unique_key)
        results = [self._unique_key(df), self._not_null(df)]
        passed = all(r["passed"] for r in results)
        report = {"assertions": results, "passed": passed, "rows": len(df)}

        if passed:
            logger.info("Session assertions PASSED on %d row(s).", len(df))
            return report

        failed = [r for r in results if not r["passed"]]
        msg = f"Session assertions FAILED: {failed}"
        logger.error(msg)
        if self.fail_hard:
            raise AssertionFailure(msg)
        logger.warning("fail_on_assertion=false - continuing")
        return report

    def _unique_key(self, df: pd.DataFrame) -> dict:
        missing = [c for c in self.unique_key if c not in df.columns]
        if missing:
            return {"assertion": "unique_key", "passed": False, "missing_columns": missing}
        duplicates = int(df.duplicated(subset=self.unique_key, keep=False).sum())
        return {"assertion": "unique_key", "passed": duplicates == 0,
                "key": self.unique_key, "duplicate_rows": duplicates}

    def _not_null(self, df: pd.DataFrame) -> dict:
        null_counts = {}
        for column in self.not_null_columns:
            if column not in df.columns:
                if len(df):
                    null_counts[column] = len(df)
                continue
            nulls = int(df[column].isna().sum())
            if nulls:
                null_counts[column] = nulls
        return {"assertion": "not_null", "passed": not null_counts,
                "columns": list(self.not_null_columns), "null_counts": null_counts}
