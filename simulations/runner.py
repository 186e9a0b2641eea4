"""
Client-side attempt runner.

A framework-free state machine that drives one attempt from the student's
side: the answer ledger, per-question time tracking, the countdown and the
submit handshake. Time comes from an injectable monotonic ``clock``; network
calls go through an injectable ``transport`` with three methods:

    start_attempt(simulation_id)                       -> dict (attempt_state payload)
    save_progress(attempt_id, answers, elapsed_seconds) -> dict
    submit(attempt_id, answers, elapsed_seconds, reason) -> dict

Transport implementations raise ``TransportError`` for retryable failures.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


NOT_STARTED = "NOT_STARTED"
IN_PROGRESS = "IN_PROGRESS"
SUBMITTING = "SUBMITTING"
SUBMITTED = "SUBMITTED"

# mirrors common.enums.SubmitReason values on the wire
REASON_MANUAL = "MANUAL"
REASON_TIMEOUT = "TIMEOUT"


class RunnerError(Exception):
    pass


class TransportError(RunnerError):
    """Network/server failure; the call may be retried."""


class InvalidTransition(RunnerError):
    pass


@dataclass
class LedgerEntry:
    question_id: str
    selected_option_id: Optional[str] = None
    answer_text: str = ""
    time_spent_seconds: float = 0.0
    flagged: bool = False

    def as_payload(self) -> dict:
        return {
            "question_id": self.question_id,
            "selected_option_id": self.selected_option_id,
            "answer_text": self.answer_text,
            "time_spent_seconds": int(self.time_spent_seconds),
            "flagged": self.flagged,
        }


@dataclass
class RunnerEvent:
    kind: str
    data: dict = field(default_factory=dict)


class AttemptRunner:
    def __init__(self, simulation_id, question_ids, transport, duration_seconds: int = 0,
                 clock: Callable[[], float] = time.monotonic, on_event: Optional[Callable] = None):
        self.simulation_id = simulation_id
        self.question_ids = [str(q) for q in question_ids]
        self.transport = transport
        self.duration_seconds = int(duration_seconds or 0)
        self.clock = clock
        self.on_event = on_event

        self.state = NOT_STARTED
        self.attempt_id = None
        self.ledger: dict[str, LedgerEntry] = {}
        self.current_index = 0
        self.result: Optional[dict] = None
        self.submit_reason: Optional[str] = None
        self.events: list[RunnerEvent] = []

        self._elapsed_base = 0.0
        self._started_clock: Optional[float] = None
        self._question_clock: Optional[float] = None
        self._timeout_fired = False
        self._submit_in_flight = False
        self._listeners: list[Callable] = []
        # the autosave timer thread reads the ledger while the host mutates it
        self._lock = threading.RLock()

    # --- helpers ---

    def _emit(self, kind, **data):
        ev = RunnerEvent(kind, data)
        self.events.append(ev)
        if self.on_event:
            self.on_event(ev)
        for listener in list(self._listeners):
            listener(ev)

    def add_listener(self, fn: Callable[[RunnerEvent], None]):
        self._listeners.append(fn)

    def _require(self, *states):
        if self.state not in states:
            raise InvalidTransition(f"not allowed in state {self.state}")

    @property
    def current_question_id(self) -> Optional[str]:
        if not self.question_ids:
            return None
        return self.question_ids[self.current_index]

    @property
    def elapsed_seconds(self) -> float:
        if self._started_clock is None:
            return self._elapsed_base
        return self._elapsed_base + (self.clock() - self._started_clock)

    @property
    def remaining_seconds(self) -> Optional[float]:
        if not self.duration_seconds:
            return None
        return max(0.0, self.duration_seconds - self.elapsed_seconds)

    @property
    def answered_count(self) -> int:
        return sum(1 for e in self.ledger.values() if e.selected_option_id is not None or e.answer_text.strip())

    def _flush_question_time(self):
        """Adds time since the last flush to the current question."""
        if self._question_clock is None:
            return
        now = self.clock()
        qid = self.current_question_id
        if qid is not None:
            self.ledger[qid].time_spent_seconds += now - self._question_clock
        self._question_clock = now

    # --- lifecycle ---

    def start(self):
        """Starts a fresh attempt or resumes the server's in-progress one."""
        self._require(NOT_STARTED)
        payload = self.transport.start_attempt(self.simulation_id)

        self.attempt_id = payload["attempt_id"]
        self.ledger = {qid: LedgerEntry(qid) for qid in self.question_ids}
        for saved in payload.get("answers") or []:
            qid = str(saved["question_id"])
            if qid not in self.ledger:
                continue
            self.ledger[qid] = LedgerEntry(
                question_id=qid,
                selected_option_id=saved.get("selected_option_id"),
                answer_text=saved.get("answer_text") or "",
                time_spent_seconds=float(saved.get("time_spent_seconds") or 0),
                flagged=bool(saved.get("flagged")),
            )
        self._elapsed_base = float(payload.get("elapsed_seconds") or 0)

        now = self.clock()
        self._started_clock = now
        self._question_clock = now
        self.current_index = 0
        self.state = IN_PROGRESS
        self._emit("started", attempt_id=self.attempt_id, resumed=bool(payload.get("resumed")))
        return self

    def select_answer(self, option_id):
        """Selecting the already-selected option clears it. Ignored unless IN_PROGRESS."""
        with self._lock:
            if self.state != IN_PROGRESS:
                return
            entry = self.ledger[self.current_question_id]
            option_id = str(option_id) if option_id is not None else None
            entry.selected_option_id = None if entry.selected_option_id == option_id else option_id

    def set_answer_text(self, text: str):
        with self._lock:
            if self.state != IN_PROGRESS:
                return
            self.ledger[self.current_question_id].answer_text = text or ""

    def toggle_flag(self):
        with self._lock:
            if self.state != IN_PROGRESS:
                return
            entry = self.ledger[self.current_question_id]
            entry.flagged = not entry.flagged

    def navigate(self, index: int):
        with self._lock:
            self._require(IN_PROGRESS)
            if not 0 <= index < len(self.question_ids):
                raise IndexError(f"question index {index} out of range")
            self._flush_question_time()
            self.current_index = index

    def next(self):
        if self.current_index < len(self.question_ids) - 1:
            self.navigate(self.current_index + 1)

    def previous(self):
        if self.current_index > 0:
            self.navigate(self.current_index - 1)

    def tick(self):
        """
        Called once per second by the host loop. Fires the timeout submit at
        most once; the ``time_up`` event goes out before the network call.
        A submit left in SUBMITTING by a failure is resent here, so the loop
        recovers without an explicit ``retry_submit``. Transport failures
        surface as ``submit_failed`` events, never as exceptions.
        """
        try:
            if self.state == SUBMITTING:
                if self._submit_in_flight:
                    return None
                return self.retry_submit()
            if self.state != IN_PROGRESS or not self.duration_seconds or self._timeout_fired:
                return None
            if self.remaining_seconds > 0:
                return None
            self._timeout_fired = True
            self._emit("time_up", attempt_id=self.attempt_id)
            return self.submit(REASON_TIMEOUT)
        except TransportError:
            return None

    def snapshot(self) -> dict:
        """Autosave payload. Flushes the running question timer first."""
        with self._lock:
            if self.state == IN_PROGRESS:
                self._flush_question_time()
            return {
                "attempt_id": self.attempt_id,
                "answers": [self.ledger[qid].as_payload() for qid in self.question_ids if qid in self.ledger],
                "elapsed_seconds": int(self.elapsed_seconds),
            }

    def _freeze_clock(self):
        self._flush_question_time()
        self._elapsed_base = self.elapsed_seconds
        if self.duration_seconds:
            self._elapsed_base = min(self._elapsed_base, float(self.duration_seconds))
        self._started_clock = None
        self._question_clock = None

    def submit(self, reason: str = REASON_MANUAL):
        """
        IN_PROGRESS -> SUBMITTING -> SUBMITTED. On ``TransportError`` the
        runner stays in SUBMITTING and the error propagates; call
        ``retry_submit`` (or keep ticking) to resend with the same attempt id.
        """
        with self._lock:
            self._require(IN_PROGRESS)
            self._freeze_clock()
            self.state = SUBMITTING
            self.submit_reason = reason
        self._emit("submitting", attempt_id=self.attempt_id, reason=reason)
        return self._send_submit()

    def retry_submit(self):
        self._require(SUBMITTING)
        return self._send_submit()

    def _send_submit(self):
        with self._lock:
            if self._submit_in_flight:
                raise InvalidTransition("submit already in flight")
            self._submit_in_flight = True
        try:
            payload = self.snapshot()
            result = self.transport.submit(
                self.attempt_id, payload["answers"], payload["elapsed_seconds"], self.submit_reason
            )
        except TransportError:
            logger.warning("submit failed attempt=%s, will retry", self.attempt_id)
            self._emit("submit_failed", attempt_id=self.attempt_id)
            raise
        finally:
            self._submit_in_flight = False
        with self._lock:
            self.result = result
            self.state = SUBMITTED
        self._emit("submitted", attempt_id=self.attempt_id, reason=self.submit_reason)
        return result


class AutosaveScheduler:
    """
    Periodic ledger push while the runner is IN_PROGRESS.

    Failures are logged and counted, never raised; after ``failure_alert``
    consecutive failures ``on_degraded`` is called once (a later success
    re-arms it). The scheduler stops itself, cancelling any armed timer, as
    soon as the runner starts submitting. ``scheduler(delay, fn)`` must
    return an object with ``cancel()``; defaults to ``threading.Timer``.
    """

    def __init__(self, runner: AttemptRunner, transport=None, interval: float = 30,
                 scheduler: Optional[Callable[[float, Callable], Any]] = None,
                 failure_alert: int = 3, on_degraded: Optional[Callable[[int], None]] = None):
        self.runner = runner
        self.transport = transport or runner.transport
        self.interval = interval
        self.scheduler = scheduler or _thread_timer
        self.failure_alert = failure_alert
        self.on_degraded = on_degraded

        self.consecutive_failures = 0
        self.last_saved: Optional[dict] = None
        self._handle = None
        self._running = False
        self._alerted = False
        self._lock = threading.Lock()
        runner.add_listener(self._on_runner_event)

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        with self._lock:
            if self._running or self.runner.state != IN_PROGRESS:
                return
            self._running = True
            self._schedule()

    def stop(self):
        with self._lock:
            self._running = False
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None

    def _on_runner_event(self, event: RunnerEvent):
        if event.kind in ("submitting", "submitted"):
            self.stop()

    def _schedule(self):
        self._handle = self.scheduler(self.interval, self._fire)

    def _fire(self):
        with self._lock:
            self._handle = None
            if not self._running:
                return
        if self.runner.state != IN_PROGRESS:
            self.stop()
            return

        try:
            self.save_now()
        finally:
            with self._lock:
                if self._running and self.runner.state == IN_PROGRESS:
                    self._schedule()
                else:
                    self._running = False

    def save_now(self) -> bool:
        snap = self.runner.snapshot()
        try:
            self.last_saved = self.transport.save_progress(
                snap["attempt_id"], snap["answers"], snap["elapsed_seconds"]
            )
        except TransportError:
            logger.warning(
                "autosave failed attempt=%s consecutive=%s", snap["attempt_id"], self.consecutive_failures + 1
            )
            return self._failed()
        except Exception:
            logger.exception("autosave crashed attempt=%s", snap["attempt_id"])
            return self._failed()

        self.consecutive_failures = 0
        self._alerted = False
        return True

    def _failed(self) -> bool:
        self.consecutive_failures += 1
        if (self.consecutive_failures >= self.failure_alert and not self._alerted
                and self.on_degraded is not None):
            self._alerted = True
            self.on_degraded(self.consecutive_failures)
        return False


def _thread_timer(delay, fn):
    t = threading.Timer(delay, fn)
    t.daemon = True
    t.start()
    return t
