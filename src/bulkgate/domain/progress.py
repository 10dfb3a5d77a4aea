"""Progress events for running batches."""

import logging
import threading
from collections import defaultdict
from typing import Callable, Optional

from bulkgate.domain.entities import ProgressEvent, ProgressStage

log = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]

# Advisory percentage at which each stage starts.
STAGE_PERCENTAGES = {
    ProgressStage.PARSING: 10,
    ProgressStage.MAPPING: 25,
    ProgressStage.VALIDATING: 40,
    ProgressStage.BACKING_UP: 60,
    ProgressStage.APPLYING: 70,
    ProgressStage.COMPLETED: 100,
}


class ProgressReporter:
    """Record and publish progress events keyed by batch id.

    Percentages never go down for a batch, and once a batch reaches a
    terminal stage (completed or error) later events are ignored.
    """

    def __init__(self):
        self._history: dict[str, list[ProgressEvent]] = defaultdict(list)
        self._listeners: dict[Optional[str], list[ProgressListener]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, listener: ProgressListener, batch_id: Optional[str] = None) -> None:
        """Register a listener for one batch, or for every batch when batch_id is None."""
        with self._lock:
            self._listeners[batch_id].append(listener)

    def unsubscribe(self, listener: ProgressListener, batch_id: Optional[str] = None) -> None:
        with self._lock:
            if listener in self._listeners[batch_id]:
                self._listeners[batch_id].remove(listener)

    def emit(
        self,
        batch_id: str,
        stage: ProgressStage,
        message: str,
        percentage: Optional[int] = None,
    ) -> Optional[ProgressEvent]:
        """Record a transition and notify listeners.

        Args:
            batch_id: Batch the event belongs to
            stage: Stage entered or updated
            message: Human-readable status text
            percentage: Advisory percentage; defaults to the stage's start value

        Returns:
            The recorded event, or None if the batch already finished
        """
        with self._lock:
            history = self._history[batch_id]
            if history and history[-1].stage.is_terminal:
                log.debug("Ignoring %s event for finished batch %s", stage, batch_id)
                return None

            floor = history[-1].percentage if history else 0
            if percentage is None:
                percentage = STAGE_PERCENTAGES.get(stage, floor)
            percentage = max(floor, min(100, percentage))

            event = ProgressEvent(batch_id=batch_id, stage=stage, message=message, percentage=percentage)
            history.append(event)
            listeners = list(self._listeners[batch_id]) + list(self._listeners[None])

        log.debug("[%s] %s %d%% %s", batch_id, stage, percentage, message)
        for listener in listeners:
            listener(event)
        return event

    def fail(self, batch_id: str, message: str) -> Optional[ProgressEvent]:
        """Move a batch to the error stage."""
        return self.emit(batch_id, ProgressStage.ERROR, message)

    def events(self, batch_id: str) -> list[ProgressEvent]:
        """Return every event recorded for a batch, oldest first."""
        with self._lock:
            return list(self._history.get(batch_id, []))

    def latest(self, batch_id: str) -> Optional[ProgressEvent]:
        """Return the most recent event for a batch."""
        events = self.events(batch_id)
        return events[-1] if events else None
