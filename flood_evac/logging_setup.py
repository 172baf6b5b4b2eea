"""
Per-run logging.

A run writes ``flood_evac_<batch>.log`` into its output directory.  Handlers
go on the root logger so messages from flood_evac and from the libraries it
drives (rasterio, urllib3 via requests) share one file.  Every handler added
here is tagged; teardown removes exactly those and puts the root level back.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

_HANDLER_TAG = "_flood_evac_handler"
FILE_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
CONSOLE_FORMAT = "%(levelname)s %(message)s"

# Chatty at DEBUG; held at INFO while a run logs at DEBUG.
_NOISY_LOGGERS = ("rasterio", "urllib3")

_saved_root_level: int | None = None
_saved_noisy_levels: dict = {}


def log_file_path(output_dir: str, batch_number: int = 1) -> str:
    return os.path.join(output_dir, f"flood_evac_{batch_number}.log")


def configure_simulation_logging(
    output_dir: str,
    batch_number: int = 1,
    file_level: int = logging.INFO,
    console_level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Start logging a run to *output_dir* (created if needed) and, optionally, the console.

    Calling it again replaces the previous run's handlers; teardown still
    restores the level the root logger had before the first call.  Returns the
    ``flood_evac.sim`` logger used for run progress lines.
    """
    global _saved_root_level

    root = logging.getLogger()
    _remove_tagged_handlers(root)
    if _saved_root_level is None:
        _saved_root_level = root.level

    Path(output_dir).mkdir(parents=True, exist_ok=True)
    _add_tagged(root, logging.FileHandler(log_file_path(output_dir, batch_number), mode="w"),
                file_level, FILE_FORMAT)
    levels = [file_level]
    if console:
        _add_tagged(root, logging.StreamHandler(), console_level, CONSOLE_FORMAT)
        levels.append(console_level)

    root.setLevel(min(levels))
    if root.level <= logging.DEBUG:
        for name in _NOISY_LOGGERS:
            noisy = logging.getLogger(name)
            _saved_noisy_levels.setdefault(name, noisy.level)
            noisy.setLevel(logging.INFO)

    return logging.getLogger("flood_evac.sim")


def teardown_simulation_logging() -> None:
    """Undo ``configure_simulation_logging``.  A no-op if nothing is configured."""
    global _saved_root_level

    root = logging.getLogger()
    _remove_tagged_handlers(root)
    if _saved_root_level is not None:
        root.setLevel(_saved_root_level)
        _saved_root_level = None

    while _saved_noisy_levels:
        name, level = _saved_noisy_levels.popitem()
        logging.getLogger(name).setLevel(level)


def _add_tagged(root: logging.Logger, handler: logging.Handler, level: int, fmt: str) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    setattr(handler, _HANDLER_TAG, True)
    root.addHandler(handler)


def _remove_tagged_handlers(logger: logging.Logger) -> None:
    for handler in [h for h in logger.handlers if getattr(h, _HANDLER_TAG, False)]:
        logger.removeHandler(handler)
        handler.close()
