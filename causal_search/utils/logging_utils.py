# causal_search/utils/logging_utils.py
# ======================================================================================
# Causal Search Engine (CSE)
# Logging Utilities: config-driven console / file / JSONL logging
# --------------------------------------------------------------------------------------
# Design
#   - init_logging(cfg, run_id): root logger with console + optional file/JSON handlers,
#     driven by the `logging:` config section (level, to_file, to_json, dir).
#     The console handler writes to stderr; `cse search` prints graphs on stdout.
#   - get_logger(name): namespaced logger ("cse.boss", "cse.bes", ...).
#   - add_run_metadata(logger, run_id, cfg_hash): one provenance line per run.
#
# Search loops never print; they log here and emit SearchEvents to an optional sink.
#
# License
#   MIT (c) 2025 Causal Search Engine contributors
# ======================================================================================

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class _JSONLogHandler(logging.Handler):
    """
    Writes one JSON object per record (JSONL).
    """

    def __init__(self, path: Path, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("a", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "time": datetime.now(timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "module": record.module,
                "func": record.funcName,
                "line": record.lineno,
            }
            run_id = getattr(record, "run_id", None)
            if run_id:
                entry["run_id"] = run_id
            self._fh.write(json.dumps(entry, ensure_ascii=False) + "\n")
            self._fh.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            if not self._fh.closed:
                self._fh.close()
        finally:
            super().close()


def _run_tag(run_id: Optional[str]) -> str:
    return run_id or datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


def init_logging(cfg: Dict[str, Any], run_id: Optional[str] = None) -> None:
    """
    Configure the root logger from the config dictionary.

    Parameters
    ----------
    cfg : dict
        Resolved config (reads the "logging" section).
    run_id : str, optional
        Run identifier stamped into log file names.
    """
    log_cfg = cfg.get("logging", {}) if cfg else {}
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.setLevel(level)

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(level)
    ch.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    root.addHandler(ch)

    log_dir = Path(log_cfg.get("dir", "logs"))
    if log_cfg.get("to_file", False):
        log_file = log_dir / f"cse_{_run_tag(run_id)}.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        root.addHandler(fh)

    if log_cfg.get("to_json", False):
        root.addHandler(_JSONLogHandler(log_dir / f"cse_{_run_tag(run_id)}.jsonl", level=level))

    root.debug("Logging initialized", extra={"run_id": run_id})


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def add_run_metadata(logger: logging.Logger, run_id: str, cfg_hash: str) -> None:
    logger.info("[RunMeta] run_id=%s cfg_hash=%s", run_id, cfg_hash, extra={"run_id": run_id})
