# mpcsum/poller.py
"""Background polling of peers for missing shares.

One `PhasePoller` thread runs per (process, phase). Each tick it asks every
peer that is still missing (and not backing off) for its share, all peers
in parallel, and merges whatever comes back through the store. Every poller
fetches on its own small thread pool, so a process stuck on slow peers never
delays the others. The `PollerManager` starts and stops pollers as the store
reports transitions.
"""
import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .errors import (
    InvalidPhase,
    MpcError,
    PeerNotFound,
    PeerUnreachable,
    ProcessNotFound,
    ProtocolViolation,
    Timeout,
)
from .network import NOT_FOUND, NOT_READY, FetchResult, PeerClient
from .process import TERMINAL_STATES, Peer, Phase, Process, ProcessState
from .store import ProcessStore

logger = logging.getLogger(__name__)


@dataclass
class PollerSettings:
    poll_interval: float = 0.5
    phase_timeout: float = 30.0
    backoff_base: Optional[float] = None  # defaults to poll_interval
    backoff_max: float = 5.0
    max_not_found: int = 5
    max_workers: int = 8  # per poller, also capped by the number of peers

    @classmethod
    def from_settings(cls, settings) -> "PollerSettings":
        return cls(
            poll_interval=settings.poll_interval,
            phase_timeout=settings.phase_timeout,
            backoff_max=settings.backoff_max,
            max_not_found=settings.max_not_found,
        )


class _Backoff:
    __slots__ = ("attempts", "next_at", "not_found")

    def __init__(self):
        self.attempts = 0
        self.next_at = 0.0
        self.not_found = 0


class PhasePoller:
    def __init__(
        self,
        store: ProcessStore,
        client: PeerClient,
        process_id: str,
        phase: Phase,
        settings: PollerSettings,
        on_exit: Optional[Callable[["PhasePoller"], None]] = None,
    ):
        self.store = store
        self.client = client
        self.process_id = process_id
        self.phase = phase
        self.settings = settings
        self._on_exit = on_exit
        self._stop = threading.Event()
        self._backoff: Dict[str, _Backoff] = {}
        self._thread = threading.Thread(
            target=self._run, name=f"poller-{phase.value}-{process_id}", daemon=True
        )

    @property
    def key(self) -> Tuple[str, Phase]:
        return self.process_id, self.phase

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    # ------------------------------------------------------------------
    def _run(self) -> None:
        logger.info("[poller] %s: polling %s shares", self.process_id, self.phase.value)
        executor = None
        try:
            while not self._stop.is_set():
                try:
                    process = self.store.get(self.process_id)
                except ProcessNotFound:
                    logger.info("[poller] %s: process deleted, stopping", self.process_id)
                    return
                if process.is_terminal or process.phase_complete(self.phase):
                    break
                if time.time() - process.phase_started_at >= self.settings.phase_timeout:
                    self._fail(Timeout(
                        f"timeout: {self.phase.value} phase not complete after "
                        f"{self.settings.phase_timeout:g}s"
                    ))
                    return
                if executor is None:
                    workers = max(1, min(self.settings.max_workers, process.n - 1))
                    executor = ThreadPoolExecutor(
                        max_workers=workers, thread_name_prefix=f"fetch-{self.process_id}"
                    )
                self._tick(process, executor)
                self._stop.wait(self.settings.poll_interval)
            logger.info("[poller] %s: %s phase poller done", self.process_id, self.phase.value)
        finally:
            if executor is not None:
                executor.shutdown(wait=False)
            if self._on_exit is not None:
                self._on_exit(self)

    def _due(self, process: Process) -> List[Peer]:
        now = time.monotonic()
        due = []
        for peer in process.missing_peers(self.phase):
            state = self._backoff.setdefault(peer.address, _Backoff())
            if state.next_at <= now:
                due.append(peer)
        return due

    def _fetch(self, peer: Peer) -> FetchResult:
        if self.phase is Phase.INPUT:
            return self.client.fetch_input_share(peer.address, self.process_id)
        return self.client.fetch_sum_share(peer.address, self.process_id)

    def _tick(self, process: Process, executor: ThreadPoolExecutor) -> None:
        due = self._due(process)
        if not due:
            return
        futures = {executor.submit(self._fetch, peer): peer for peer in due}
        for fut in as_completed(futures):
            if self._stop.is_set():
                return
            peer = futures[fut]
            try:
                outcome = fut.result()
            except PeerUnreachable as e:
                self._retry_later(peer, str(e))
                continue
            except Exception as e:
                logger.exception("[poller] %s: unexpected error fetching from %s", self.process_id, peer.address)
                self._retry_later(peer, repr(e))
                continue

            if outcome is NOT_READY:
                self._retry_later(peer, "not ready")
            elif outcome is NOT_FOUND:
                if self._not_found(peer):
                    return
            elif not self._merge(peer, outcome):
                return

    def _merge(self, peer: Peer, share) -> bool:
        """Merge one fetched share; False when polling must stop."""
        try:
            result = self.store.merge_share(self.process_id, self.phase, peer.address, share)
        except ProcessNotFound:
            self.stop()
            return False
        except ProtocolViolation as e:
            logger.error("[poller] %s: protocol violation by %s: %s", self.process_id, peer.address, e)
            self.stop()
            return False
        except InvalidPhase as e:
            self._retry_later(peer, str(e))
            return True

        self._backoff[peer.address] = _Backoff()
        logger.debug(
            "[poller] %s: %s share from %s %s",
            self.process_id, self.phase.value, peer.address, result.outcome,
        )
        if result.process is not None and (
            result.process.is_terminal or result.process.phase_complete(self.phase)
        ):
            self.stop()
            return False
        return True

    def _retry_later(self, peer: Peer, why: str) -> None:
        state = self._backoff.setdefault(peer.address, _Backoff())
        state.attempts += 1
        base = self.settings.backoff_base or self.settings.poll_interval
        delay = min(self.settings.backoff_max, base * 2 ** (state.attempts - 1))
        # jitter so that peers do not poll one another in lockstep
        delay += random.uniform(0, delay * 0.1)
        state.next_at = time.monotonic() + delay
        logger.debug(
            "[poller] %s: %s from %s, retry in %.2fs (%s)",
            self.process_id, self.phase.value, peer.address, delay, why,
        )

    def _not_found(self, peer: Peer) -> bool:
        """Count a NotFound answer; True when the process had to be failed."""
        state = self._backoff.setdefault(peer.address, _Backoff())
        state.not_found += 1
        logger.warning(
            "[poller] %s: peer %s does not know the process (%d/%d)",
            self.process_id, peer.address, state.not_found, self.settings.max_not_found,
        )
        if state.not_found >= self.settings.max_not_found:
            self._fail(PeerNotFound(f"peer {peer.address} does not know process {self.process_id}"))
            return True
        self._retry_later(peer, "not found")
        return False

    def _fail(self, error: MpcError) -> None:
        try:
            self.store.fail(self.process_id, str(error))
        except ProcessNotFound:
            logger.info("[poller] %s: deleted before it could be failed", self.process_id)
        self.stop()


class PollerManager:
    """Keeps one poller alive per (process, phase) that still needs shares."""

    def __init__(self, store: ProcessStore, client: PeerClient, settings: Optional[PollerSettings] = None):
        self.store = store
        self.client = client
        self.settings = settings or PollerSettings()
        self._lock = threading.Lock()
        self._pollers: Dict[Tuple[str, Phase], PhasePoller] = {}
        self._closed = False
        store.subscribe(self.on_transition)

    def on_transition(self, process_id: str, state: ProcessState) -> None:
        if state is ProcessState.COLLECTING_INPUT_SHARES:
            self.start(process_id, Phase.INPUT)
        elif state is ProcessState.COLLECTING_SUM_SHARES:
            self.start(process_id, Phase.SUM)
        elif state in TERMINAL_STATES:
            self.stop_process(process_id)

    def start(self, process_id: str, phase: Phase) -> Optional[PhasePoller]:
        with self._lock:
            if self._closed:
                return None
            existing = self._pollers.get((process_id, phase))
            if existing is not None and not existing.stopped:
                return existing
            poller = PhasePoller(
                self.store, self.client, process_id, phase, self.settings, on_exit=self._forget
            )
            self._pollers[poller.key] = poller
        poller.start()
        return poller

    def _forget(self, poller: PhasePoller) -> None:
        with self._lock:
            if self._pollers.get(poller.key) is poller:
                del self._pollers[poller.key]

    def stop_process(self, process_id: str) -> None:
        with self._lock:
            keys = [k for k in self._pollers if k[0] == process_id]
            pollers = [self._pollers.pop(k) for k in keys]
        for poller in pollers:
            poller.stop()

    def active(self) -> List[Tuple[str, Phase]]:
        with self._lock:
            return [k for k, p in self._pollers.items() if p.is_alive()]

    def shutdown(self, timeout: float = 5.0) -> None:
        with self._lock:
            self._closed = True
            pollers = list(self._pollers.values())
            self._pollers.clear()
        for poller in pollers:
            poller.stop()
        for poller in pollers:
            poller.join(timeout)
        self.client.close()
