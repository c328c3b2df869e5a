from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import pytest

from causal_search.utils.logging_utils import add_run_metadata, get_logger, init_logging


@pytest.fixture()
def restore_root_logging():
    root = logging.getLogger()
    saved, level = list(root.handlers), root.level
    yield root
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in saved:
        root.addHandler(h)
    root.setLevel(level)


def test_console_goes_to_stderr(restore_root_logging):
    init_logging({"logging": {"level": "WARNING"}}, run_id="t0")
    streams = [h.stream for h in restore_root_logging.handlers
               if type(h) is logging.StreamHandler]
    assert streams == [sys.stderr]
    assert restore_root_logging.level == logging.WARNING


def test_jsonl_records_carry_run_id(tmp_path: Path, restore_root_logging):
    init_logging({"logging": {"level": "INFO", "to_json": True, "dir": str(tmp_path)}}, run_id="t1")
    add_run_metadata(get_logger("cse.test"), "t1", "abc123")
    lines = (tmp_path / "cse_t1.jsonl").read_text(encoding="utf-8").splitlines()
    rec = json.loads(lines[-1])
    assert rec["run_id"] == "t1"
    assert "cfg_hash=abc123" in rec["msg"]
