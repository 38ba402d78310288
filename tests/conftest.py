"""Shared fixtures."""

from pathlib import Path

import pytest

from vaultdrops.common import logging as vd_logging


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path: Path):
    """Send every JSON log line to a per-test file and clear context ids."""
    log_path = tmp_path / "logs" / "vaultdrops.jsonl"
    vd_logging.configure_log_path(log_path)
    vd_logging.set_run_id(None)
    vd_logging.set_request_id(None)
    yield log_path
    vd_logging.set_run_id(None)
    vd_logging.set_request_id(None)
    vd_logging.configure_log_path(vd_logging.DEFAULT_LOG_PATH)
