# phylopath/utils/logging_utils.py
# ======================================================================================
# phylopath
# Logging utilities — config-driven console / file / JSONL logging
# --------------------------------------------------------------------------------------
# Library modules only ever call `get_logger(__name__-style name)` and log.
# Applications (the CLI) call `init_logging(cfg, run_id)` once, which configures
# the "phylopath" logger tree from the `logging` section of the run config:
#
#   logging:
#     level: INFO          # DEBUG shows one line per fitted regression
#     to_file: false       # logs/<run_id>.log
#     to_json: false       # logs/<run_id>.jsonl, one JSON object per record
#     dir: logs
#
# Dependencies: Python stdlib only (logging, json, datetime, pathlib).
# ======================================================================================

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
ROOT_LOGGER = "phylopath"


class _JSONLogHandler(logging.Handler):
    """Append each record as one JSON object per line."""

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
                "run_id": getattr(record, "run_id", None),
            }
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


def init_logging(cfg: Optional[Dict[str, Any]], run_id: Optional[str] = None) -> None:
    """
    Configure the "phylopath" logger from `cfg["logging"]`.

    Existing handlers on that logger are replaced, so calling this twice
    (e.g. in tests) does not duplicate output.
    """
    log_cfg = (cfg or {}).get("logging", {}) or {}
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    run_tag = run_id or datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_dir = Path(log_cfg.get("dir", "logs"))

    logger = logging.getLogger(ROOT_LOGGER)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.setLevel(level)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(console)

    if log_cfg.get("to_file", False):
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_dir / f"phylopath_{run_tag}.log", encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(fh)

    if log_cfg.get("to_json", False):
        logger.addHandler(_JSONLogHandler(log_dir / f"phylopath_{run_tag}.jsonl", level=level))

    logger.debug("Logging initialized", extra={"run_id": run_tag})


def get_logger(name: str) -> logging.Logger:
    """Namespaced logger, e.g. get_logger("phylopath.core")."""
    return logging.getLogger(name)
