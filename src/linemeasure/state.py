"""
Latest published frame result, shared between the worker and readers.

The store holds one immutable PublishedState. Every change, whether a new
frame or a new selection, builds a fresh value and swaps the reference
under a lock, so a reader holding a snapshot never sees a mix of two
frames.
"""

import threading

from linemeasure.lines.select import select_nearest
from linemeasure.models import PublishedState, SelectionState
from linemeasure.tracer import get_tracer


class NoResultError(LookupError):
    """Raised when a selection is requested before any frame is published."""


class ResultStore:
    """Single-writer, multi-reader container for the latest frame result."""

    def __init__(self, selection_threshold=40.0):
        self.selection_threshold = selection_threshold
        self._lock = threading.Lock()
        self._state = None
        self._version = 0

    def snapshot(self):
        """Current PublishedState, or None before the first publication."""
        return self._state

    @property
    def version(self):
        return self._version

    def publish(self, result):
        """
        Publish a frame result if it is newer than the current one.

        Selection resets to none. Results for a frame index at or below the
        current one are discarded so the published state never goes back in
        time.

        Returns:
            True if the result was published
        """
        tracer = get_tracer()
        with self._lock:
            current = self._state
            if current is not None and result.frame_index <= current.result.frame_index:
                tracer.event(
                    f"Discarding stale result for frame {result.frame_index} "
                    f"(published frame is {current.result.frame_index})"
                )
                return False

            self._version += 1
            version = self._version
            self._state = PublishedState(
                version=version,
                result=result,
                selection=SelectionState.none(),
            )
        tracer.event(f"Published frame {result.frame_index} as version {version}")
        return True

    def _swap_selection(self, current, selection):
        self._version += 1
        self._state = PublishedState(
            version=self._version,
            result=current.result,
            selection=selection,
        )
        return selection

    def _require_state(self):
        current = self._state
        if current is None:
            raise NoResultError("no frame result has been published yet")
        return current

    def select_index(self, index):
        """
        Select a line of the published result by index.

        Raises NoResultError before the first publication and ValueError for
        an index outside the published line list.
        """
        with self._lock:
            current = self._require_state()
            lines = current.result.lines
            if not 0 <= index < len(lines):
                raise ValueError(f"line index {index} out of range for {len(lines)} lines")
            segment = lines[index]
            return self._swap_selection(
                current,
                SelectionState(selected_index=index, length=segment.length, valid=segment.valid),
            )

    def select_near_point(self, point, display_size):
        """
        Select the line nearest to a display-space point.

        Returns the new SelectionState, or None when no line is within the
        threshold; in that case the current selection is left untouched.
        """
        with self._lock:
            current = self._require_state()
            result = current.result
            index = select_nearest(
                point,
                display_size,
                [seg.source for seg in result.lines],
                result.image_size,
                self.selection_threshold,
            )
            if index is None:
                return None
            segment = result.lines[index]
            return self._swap_selection(
                current,
                SelectionState(selected_index=index, length=segment.length, valid=segment.valid),
            )

    def clear_selection(self):
        with self._lock:
            current = self._require_state()
            return self._swap_selection(current, SelectionState.none())
