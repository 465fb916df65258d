"""Active-session tracking and conversation cleanup.

``SessionRegistry`` is the one piece of shared mutable state in the core. It
is created once and passed to whoever needs it; nothing looks it up
globally. Registration is reference counted, so a session id opened by two
connections stays active until both have unregistered.

``SessionJanitor`` runs two background sweeps that delete conversations of
inactive sessions: a frequent one (15 s) and a slow safety net (30 min) for
unregister events that never arrived. A sweep works on a snapshot of the
active ids and never holds the registry lock while deleting.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable

from ragchat.rag.conversation import ConversationStore

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL = 15.0
DEFAULT_SAFETY_SWEEP_INTERVAL = 30 * 60.0


class SessionRegistry:
    """Thread-safe set of session ids backed by a live connection."""

    def __init__(self, conversations: ConversationStore) -> None:
        self._conversations = conversations
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def register(self, session_id: str) -> None:
        with self._lock:
            self._counts[session_id] += 1
        logger.debug("Registered session %s", session_id)

    def unregister(self, session_id: str) -> int:
        """Drop one registration of *session_id* and sweep immediately.

        Returns:
            Number of conversations the sweep deleted.
        """
        with self._lock:
            if self._counts[session_id] > 1:
                self._counts[session_id] -= 1
            else:
                self._counts.pop(session_id, None)
        logger.debug("Unregistered session %s", session_id)
        return self.sweep()

    def active_ids(self) -> frozenset[str]:
        """Return a snapshot of the active session ids."""
        with self._lock:
            return frozenset(self._counts)

    def sweep(self) -> int:
        """Delete conversations of every session not currently active."""
        count = self._conversations.delete_where_session_not_in(self.active_ids())
        if count > 0:
            logger.info("Cleaned up %d inactive conversations", count)
        return count


class _PeriodicTask:
    """Call *func* every *interval* seconds on a daemon thread until stopped."""

    def __init__(self, name: str, interval: float, func: Callable[[], object]) -> None:
        if interval <= 0:
            raise ValueError(f"{name} interval must be > 0, got {interval}")
        self.name = name
        self.interval = interval
        self._func = func
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._func()
            except Exception:
                # Keep the schedule alive; the next tick retries the reconciliation.
                logger.exception("%s failed", self.name)


class SessionJanitor:
    """Owns the recurring and safety-net cleanup sweeps for a registry."""

    def __init__(
        self,
        registry: SessionRegistry,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        safety_sweep_interval: float = DEFAULT_SAFETY_SWEEP_INTERVAL,
    ) -> None:
        self.registry = registry
        self._sweep = _PeriodicTask("session-sweep", sweep_interval, registry.sweep)
        self._safety = _PeriodicTask(
            "session-safety-sweep", safety_sweep_interval, registry.sweep
        )

    @property
    def running(self) -> bool:
        return self._sweep.running or self._safety.running

    def start(self) -> None:
        self._sweep.start()
        self._safety.start()
        logger.debug(
            "Session janitor started (every %.0fs, safety every %.0fs)",
            self._sweep.interval,
            self._safety.interval,
        )

    def stop(self) -> None:
        self._sweep.stop()
        self._safety.stop()

    def __enter__(self) -> "SessionJanitor":
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

