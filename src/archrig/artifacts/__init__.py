"""Deterministic on-disk records of apply runs."""

from archrig.artifacts.writer import RUN_REPORT_NAME, canonical_dumps, write_run_report

__all__ = ["RUN_REPORT_NAME", "canonical_dumps", "write_run_report"]
