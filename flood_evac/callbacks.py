"""
Progress reporting seam between a run and whoever is watching it.

``run_sim`` and ``Simulation`` report through a ``SimulationCallback`` and
never know what is on the other end:

* ``NullCallback`` drops everything; the default for library use.
* ``LoggingCallback`` writes events to a logger; used by the CLI.
* ``RecordingCallback`` keeps events in memory for a caller (or a
  presentation layer polling between ticks) to inspect afterwards.

Status strings in use: ``"loading data"``, ``"building flood model"``,
``"running"``, ``"paused"``, ``"<n>%"``, ``"no navigable roads"``,
``"complete"`` and ``"error"``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class SimulationCallback(Protocol):
    def on_status(self, status: str, **kwargs: Any) -> None:
        """The run moved to a new phase or progress percentage."""
        ...

    def on_metric(self, key: str, value: Any) -> None:
        """A named figure such as ``road_nodes``, ``agents_spawned`` or ``arrived``."""
        ...

    def on_file(self, key: str, filepath: str) -> None:
        """An output file was written (``diagnostics``, ``summary``)."""
        ...


class NullCallback:
    def on_status(self, status: str, **kwargs: Any) -> None:
        pass

    def on_metric(self, key: str, value: Any) -> None:
        pass

    def on_file(self, key: str, filepath: str) -> None:
        pass


class LoggingCallback:
    """Log every event at INFO, except bare percentages."""

    def __init__(self, logger_instance: Optional[logging.Logger] = None):
        self._logger = logger_instance or logger

    def on_status(self, status: str, **kwargs: Any) -> None:
        # the run loop logs its own progress line alongside each percentage
        if status.endswith("%"):
            return
        if kwargs:
            self._logger.info("status: %s %s", status, kwargs)
        else:
            self._logger.info("status: %s", status)

    def on_metric(self, key: str, value: Any) -> None:
        self._logger.info("metric: %s = %s", key, value)

    def on_file(self, key: str, filepath: str) -> None:
        self._logger.info("file: %s -> %s", key, filepath)


class RecordingCallback:
    """Keep every status in order, and the latest value of each metric and file."""

    def __init__(self):
        self.statuses: List[str] = []
        self.metrics: Dict[str, Any] = {}
        self.files: Dict[str, str] = {}

    @property
    def last_status(self) -> Optional[str]:
        return self.statuses[-1] if self.statuses else None

    def on_status(self, status: str, **kwargs: Any) -> None:
        self.statuses.append(status)

    def on_metric(self, key: str, value: Any) -> None:
        self.metrics[key] = value

    def on_file(self, key: str, filepath: str) -> None:
        self.files[key] = filepath
