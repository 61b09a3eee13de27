"""Publish-gate expectations and run reporting for recompute results."""

from uph.validation.reporters import build_run_report, save_report
from uph.validation.suites import build_suite
