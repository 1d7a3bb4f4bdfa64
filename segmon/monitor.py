#!/usr/bin/env python3
"""
Segment monitor (size-based rollover controller).

Why this file exists:
- The writer records into a single file that must never exceed a size limit.
- A background thread polls the file size; once it crosses
  ``trigger_threshold_ratio`` of the limit, the host's sink receives one
  ``SwitchRequest`` naming the next segment path.
- The host stops writing the current file, opens the next one and confirms
  with ``update_current_file()``. Until then the monitor stays disarmed so a
  slow host never receives a duplicate request for the same crossing.

Usage:
- host: monitor.start(first_file, sink) when recording begins,
        monitor.update_current_file(new_file) after each rollover,
        monitor.stop() when recording ends.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from segmon.config import SegmentConfig
from segmon.naming import extract_base_identity, extract_segment_index, next_segment_path

# Wait after a delivered request so the host can finish the cut-over
COOLDOWN_SECONDS = 2.0
_FUTURE_POLL_SECONDS = 0.05

TICK_CANCELLED = "cancelled"
TICK_DISABLED = "disabled"
TICK_ENDED = "ended"
TICK_MISSING = "missing"
TICK_IO_ERROR = "io_error"
TICK_BELOW = "below"
TICK_DISARMED = "disarmed"
TICK_STALE = "stale"
TICK_TRIGGERED = "triggered"

_LOOP_EXIT = {TICK_CANCELLED, TICK_DISABLED, TICK_ENDED}


@dataclass(frozen=True)
class SwitchRequest:
    """Delivered once per threshold crossing."""

    current_file: Path
    next_file_path: Path


SwitchSink = Callable[[SwitchRequest], Any]


class SegmentMonitor:
    """Polls the active recording file and requests rollovers from the host."""

    def __init__(
        self,
        config: SegmentConfig | None = None,
        *,
        cooldown: float = COOLDOWN_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or SegmentConfig()
        self.cooldown = max(0.0, float(cooldown))
        self._log = logger or logging.getLogger("segment_monitor")
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._cancel: Optional[threading.Event] = None
        self._generation = 0
        self._current_file: Optional[Path] = None
        self._enabled = False
        self._segment_index = 0
        self._base_identity = ""
        self._armed = True
        self._sink: Optional[SwitchSink] = None
        self._executor: Optional[Executor] = None

    @classmethod
    def from_cfg(cls, cfg: Mapping[str, Any] | None = None, **kwargs: Any) -> "SegmentMonitor":
        return cls(SegmentConfig.from_cfg(cfg), **kwargs)

    # --- Lifecycle ---
    def start(
        self,
        recording_file: str | Path,
        sink: SwitchSink,
        executor: Executor | None = None,
    ) -> None:
        """Bind a new session to ``recording_file``, superseding any previous one.

        ``executor`` is where the sink runs; without one it runs on the polling
        thread. Either way the loop waits for the sink before its cool-down.
        """
        if recording_file is None:
            raise ValueError("recording_file is required")
        if not callable(sink):
            raise TypeError("sink must be callable")
        path = Path(recording_file)
        cfg = self.config

        with self._lock:
            previous = self._thread
            if self._cancel is not None:
                self._cancel.set()
            self._generation += 1
            generation = self._generation
            cancel = threading.Event()
            self._cancel = cancel
            self._current_file = path
            self._enabled = True
            self._segment_index = extract_segment_index(path.name)
            self._base_identity = extract_base_identity(path.name)
            self._armed = True
            self._sink = sink
            self._executor = executor
            base = self._base_identity
            index = self._segment_index
            # The new loop only begins polling once the previous one has exited.
            thread = threading.Thread(
                target=self._run,
                args=(generation, cancel, previous),
                name=f"segment-monitor-{generation}",
                daemon=True,
            )
            self._thread = thread
            thread.start()

        self._log.info(
            "Starting segment monitoring for %s (base=%s, index=%d)", path.name, base, index
        )
        self._log.info(
            "Max size: %.1fMB, trigger at: %.1fMB, check every %.3fs",
            cfg.max_segment_size_bytes / (1024 * 1024),
            cfg.trigger_size / (1024 * 1024),
            cfg.check_interval,
        )
        self._join(previous)

    def stop(self) -> None:
        """Cancel the session and wait for the polling thread to exit.

        When called from the sink itself the join is skipped; the loop exits
        as soon as the sink returns.
        """
        with self._lock:
            thread = self._thread
            cancel = self._cancel
            was_enabled = self._enabled
            self._thread = None
            self._cancel = None
            self._generation += 1
            self._enabled = False
            self._current_file = None
            self._segment_index = 0
            self._armed = True
            self._sink = None
            self._executor = None
            if cancel is not None:
                cancel.set()
        if was_enabled:
            self._log.info("Stopping segment monitoring")
        self._join(thread)

    def update_current_file(self, new_file: str | Path) -> None:
        """Host confirmation that the rollover to ``new_file`` has completed."""
        path = Path(new_file)
        with self._lock:
            if not self._enabled:
                self._log.warning("Ignoring segment update while idle: %s", path.name)
                return
            self._current_file = path
            self._segment_index += 1
            self._armed = True
            index = self._segment_index
        self._log.debug("Updated current recording file to: %s (index=%d)", path.name, index)

    # --- Status ---
    def is_monitoring(self) -> bool:
        with self._lock:
            return self._enabled and self._current_file is not None

    def current_segment_index(self) -> int:
        with self._lock:
            return self._segment_index

    @property
    def current_file(self) -> Optional[Path]:
        with self._lock:
            return self._current_file

    @property
    def base_identity(self) -> str:
        with self._lock:
            return self._base_identity

    def status(self) -> dict:
        with self._lock:
            current = self._current_file
            return {
                "monitoring": self._enabled and current is not None,
                "current_file": str(current) if current is not None else None,
                "segment_index": self._segment_index,
                "base_identity": self._base_identity or None,
                "armed": self._armed,
                "trigger_size": self.config.trigger_size,
                "max_segment_size_bytes": self.config.max_segment_size_bytes,
            }

    # --- Polling loop ---
    @staticmethod
    def _join(thread: Optional[threading.Thread]) -> None:
        if thread is None or thread is threading.current_thread():
            return
        thread.join()

    def _run(
        self,
        generation: int,
        cancel: threading.Event,
        previous: Optional[threading.Thread],
    ) -> None:
        self._join(previous)
        interval = self.config.check_interval
        while not cancel.wait(interval):
            try:
                outcome = self._poll_once(generation, cancel)
            except Exception:  # noqa: BLE001 - the loop must survive any tick
                self._log.exception("Error in segment monitoring tick")
                continue
            if outcome in _LOOP_EXIT:
                break
            if outcome == TICK_TRIGGERED and cancel.wait(self.cooldown):
                break
        self._log.debug("Monitoring loop ended (session %d)", generation)

    def _poll_once(self, generation: int, cancel: threading.Event) -> str:
        """Sample the file once and deliver a request when the threshold is reached."""
        with self._lock:
            if cancel.is_set() or generation != self._generation:
                return TICK_CANCELLED
            if not self._enabled:
                return TICK_DISABLED
            current = self._current_file
            if current is None:
                self._enabled = False
                self._log.warning("Current recording file is unset, stopping monitoring")
                return TICK_ENDED
            armed = self._armed
            base = self._base_identity
            index = self._segment_index

        try:
            size = current.stat().st_size
        except FileNotFoundError:
            self._log.warning("Recording file does not exist: %s", current.name)
            return TICK_MISSING
        except OSError as exc:
            self._log.error("Unable to read size of %s: %s", current, exc)
            return TICK_IO_ERROR

        trigger_size = self.config.trigger_size
        self._log.debug(
            "Current file size: %.1fMB / %.1fMB",
            size / (1024 * 1024),
            self.config.max_segment_size_bytes / (1024 * 1024),
        )
        if size < trigger_size:
            return TICK_BELOW
        if not armed:
            self._log.debug("Rollover already requested for %s, awaiting host", current.name)
            return TICK_DISARMED

        next_path = next_segment_path(current, base, index, self.config.segment_extension)
        return self._deliver(SwitchRequest(current, next_path), generation, cancel, size)

    def _deliver(
        self,
        request: SwitchRequest,
        generation: int,
        cancel: threading.Event,
        size: int,
    ) -> str:
        # Checked and disarmed under the lock stop() cancels under, so a
        # request is either handed out before stop() took effect or dropped.
        with self._lock:
            if cancel.is_set() or generation != self._generation:
                return TICK_CANCELLED
            if not self._enabled:
                return TICK_DISABLED
            if self._current_file != request.current_file:
                return TICK_STALE
            self._armed = False
            sink = self._sink
            executor = self._executor

        self._log.info(
            "File size limit reached (%.1fMB), requesting switch to %s",
            size / (1024 * 1024),
            request.next_file_path.name,
        )
        if executor is None:
            try:
                sink(request)
            except Exception:  # noqa: BLE001 - host errors are reported, not raised
                self._log.exception("Segment switch handler failed")
            return TICK_TRIGGERED

        with self._lock:
            if cancel.is_set():
                return TICK_CANCELLED
        try:
            future = executor.submit(self._run_sink, sink, request, cancel)
        except RuntimeError as exc:
            self._log.error("Unable to dispatch segment switch: %s", exc)
            with self._lock:
                if generation == self._generation:
                    self._armed = True
            return TICK_IO_ERROR
        self._await_sink(future, cancel, request)
        return TICK_TRIGGERED

    def _run_sink(self, sink: SwitchSink, request: SwitchRequest, cancel: threading.Event) -> bool:
        """Executor-side entry; a request queued behind other work is dropped once stopped."""
        with self._lock:
            if cancel.is_set():
                self._log.info(
                    "Dropping switch request for %s, monitoring stopped",
                    request.current_file.name,
                )
                return False
        sink(request)
        return True

    def _await_sink(self, future: Future, cancel: threading.Event, request: SwitchRequest) -> None:
        while True:
            try:
                future.result(timeout=_FUTURE_POLL_SECONDS)
            except FutureTimeoutError:
                if cancel.is_set():
                    # A call that already started is left to finish.
                    if future.cancel():
                        self._log.info(
                            "Dropped pending switch request for %s, monitoring stopped",
                            request.current_file.name,
                        )
                    return
                continue
            except Exception:  # noqa: BLE001 - host errors are reported, not raised
                self._log.exception("Segment switch handler failed")
            return


__all__ = [
    "COOLDOWN_SECONDS",
    "SegmentMonitor",
    "SwitchRequest",
    "SwitchSink",
]
