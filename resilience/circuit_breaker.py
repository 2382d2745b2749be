"""Per-dependency circuit breaker backed by a keyed, atomically updated state store.

State machine::

    CLOSED --(consecutive >= failure_threshold | window count > retry_threshold)--> OPEN
    OPEN --(now >= cooldown_until, on next admit)--> HALF_OPEN
    HALF_OPEN --(probe succeeds)--> CLOSED
    HALF_OPEN --(probe fails)--> OPEN  (cooldown restarts)

CLOSED never moves directly to HALF_OPEN.  While HALF_OPEN exactly one probe is
admitted; concurrent callers are short-circuited until the probe reports back.
Reports from calls admitted in another phase never move a HALF_OPEN circuit.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, List, Optional, Protocol, Tuple, TypeVar

from config import CircuitBreakerSettings
from core import CircuitPhase, CircuitState

from .clock import Clock


logger = logging.getLogger(__name__)

T = TypeVar("T")
Mutator = Callable[[CircuitState], T]


@dataclass(frozen=True)
class CircuitPermit:
    """Admission handed out by ``CircuitBreaker.admit``; ``token`` is set only for the half-open call."""

    dependency_id: str
    token: Optional[str] = None


class CircuitStateStore(Protocol):
    """Keyed store of CircuitState with atomic read-modify-write."""

    def get(self, dependency_id: str) -> CircuitState:
        ...

    def update(self, dependency_id: str, mutator: Mutator) -> Tuple[CircuitState, T]:
        ...

    def dependencies(self) -> List[str]:
        ...


class InMemoryCircuitStateStore:
    """Thread-safe store with one lock per dependency key."""

    def __init__(self) -> None:
        self._states: Dict[str, CircuitState] = {}
        self._locks: Dict[str, Lock] = {}
        self._registry_lock = Lock()

    def _lock_for(self, dependency_id: str) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(dependency_id)
            if lock is None:
                lock = Lock()
                self._locks[dependency_id] = lock
                self._states[dependency_id] = CircuitState(dependency_id=dependency_id)
            return lock

    def get(self, dependency_id: str) -> CircuitState:
        with self._lock_for(dependency_id):
            return self._states[dependency_id].model_copy(deep=True)

    def update(self, dependency_id: str, mutator: Mutator) -> Tuple[CircuitState, T]:
        """Apply ``mutator`` to a working copy and commit it under the key lock."""
        with self._lock_for(dependency_id):
            working = self._states[dependency_id].model_copy(deep=True)
            value = mutator(working)
            self._states[dependency_id] = working
            return working.model_copy(deep=True), value

    def dependencies(self) -> List[str]:
        with self._registry_lock:
            return sorted(self._states.keys())


class CircuitBreaker:
    """Gate in front of every external dependency."""

    def __init__(
        self,
        store: Optional[CircuitStateStore] = None,
        settings: Optional[CircuitBreakerSettings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store or InMemoryCircuitStateStore()
        self._settings = settings or CircuitBreakerSettings()
        self._clock = clock or Clock()

    @property
    def settings(self) -> CircuitBreakerSettings:
        return self._settings

    def state(self, dependency_id: str) -> CircuitState:
        return self._store.get(dependency_id)

    def admit(self, dependency_id: str) -> Optional[CircuitPermit]:
        """Return a permit when a call may go out, else None. Performs OPEN -> HALF_OPEN on cooldown expiry.

        The permit of the single half-open call carries a token; only a report that
        presents that token may close or re-open the circuit.
        """
        now = self._clock.now()

        def _admit(state: CircuitState) -> Tuple[Optional[CircuitPermit], Optional[str]]:
            if state.phase == CircuitPhase.CLOSED:
                return CircuitPermit(dependency_id), None
            transition = None
            if state.phase == CircuitPhase.OPEN:
                if state.cooldown_until is None or now < state.cooldown_until:
                    return None, None
                state.phase = CircuitPhase.HALF_OPEN
                transition = "half_open"
            elif state.probe_in_flight:
                return None, None
            state.probe_in_flight = True
            state.probe_token = uuid.uuid4().hex[:12]
            return CircuitPermit(dependency_id, state.probe_token), transition

        _, (permit, transition) = self._store.update(dependency_id, _admit)
        if transition:
            logger.info("circuit_half_open dependency=%s", dependency_id)
        elif permit is None:
            logger.debug("circuit_short_circuit dependency=%s", dependency_id)
        return permit

    def allow_request(self, dependency_id: str) -> bool:
        return self.admit(dependency_id) is not None

    def record_success(self, dependency_id: str, permit: Optional[CircuitPermit] = None) -> CircuitState:
        token = permit.token if permit is not None else None

        def _success(state: CircuitState) -> bool:
            if state.phase == CircuitPhase.CLOSED:
                state.consecutive_failures = 0
                return False
            if state.phase == CircuitPhase.HALF_OPEN and _holds_slot(state, token):
                state.phase = CircuitPhase.CLOSED
                state.consecutive_failures = 0
                state.cooldown_until = None
                state.recent_failures = []
                state.probe_in_flight = False
                state.probe_token = None
                return True
            # late success from a call admitted before the circuit opened
            return False

        state, closed = self._store.update(dependency_id, _success)
        if closed:
            logger.info("circuit_closed dependency=%s", dependency_id)
        return state

    def record_failure(self, dependency_id: str, permit: Optional[CircuitPermit] = None) -> CircuitState:
        now = self._clock.now()
        settings = self._settings
        token = permit.token if permit is not None else None

        def _failure(state: CircuitState) -> Optional[str]:
            state.last_failure_at = now
            state.consecutive_failures += 1
            horizon = now - settings.window_seconds
            state.recent_failures = [ts for ts in state.recent_failures if ts > horizon] + [now]

            if state.phase == CircuitPhase.HALF_OPEN:
                if not _holds_slot(state, token):
                    return None
                state.phase = CircuitPhase.OPEN
                state.probe_in_flight = False
                state.probe_token = None
                state.cooldown_until = now + settings.cooldown_seconds
                return "probe_failed"
            if state.phase == CircuitPhase.OPEN:
                # late report from a call admitted before the circuit opened
                return None

            tripped_consecutive = state.consecutive_failures >= settings.failure_threshold
            tripped_window = len(state.recent_failures) > settings.retry_threshold
            if tripped_consecutive or tripped_window:
                state.phase = CircuitPhase.OPEN
                state.cooldown_until = now + settings.cooldown_seconds
                return "consecutive" if tripped_consecutive else "window"
            return None

        state, trigger = self._store.update(dependency_id, _failure)
        if trigger:
            logger.warning(
                "circuit_open dependency=%s trigger=%s consecutive=%s window=%s cooldown_until=%.0f",
                dependency_id,
                trigger,
                state.consecutive_failures,
                len(state.recent_failures),
                state.cooldown_until or 0.0,
            )
        return state

    def release_probe(self, dependency_id: str, permit: Optional[CircuitPermit] = None) -> None:
        """Free a half-open slot whose call never reached the dependency.

        With a permit, only the slot that permit holds is freed.
        """
        token = permit.token if permit is not None else None

        def _release(state: CircuitState) -> None:
            if state.phase != CircuitPhase.HALF_OPEN:
                return
            if permit is not None and not _holds_slot(state, token):
                return
            state.probe_in_flight = False
            state.probe_token = None

        self._store.update(dependency_id, _release)

    def reset(self, dependency_id: str) -> CircuitState:
        def _reset(state: CircuitState) -> None:
            state.phase = CircuitPhase.CLOSED
            state.consecutive_failures = 0
            state.recent_failures = []
            state.cooldown_until = None
            state.probe_in_flight = False
            state.probe_token = None

        state, _ = self._store.update(dependency_id, _reset)
        return state

    def snapshot(self) -> Dict[str, CircuitState]:
        return {dep: self._store.get(dep) for dep in self._store.dependencies()}


def _holds_slot(state: CircuitState, token: Optional[str]) -> bool:
    return token is not None and state.probe_in_flight and state.probe_token == token
