# mpcsum/store.py
"""In-memory process registry.

The registry lock only guards the id -> record mapping. Every record has
its own lock, so merging a share into one process never waits on another
one. Records handed out are snapshots; the live record never leaves the
store.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from .errors import AlreadyExists, NotReady, ProcessNotFound, ProtocolViolation
from .mpc_core.shamir import Share
from .process import (
    MergeResult,
    Phase,
    Process,
    ProcessState,
    REJECTED,
    fail as _fail,
    input_share_for as _input_share_for,
    merge_share as _merge_share,
    new_process,
    normalize_address,
)

logger = logging.getLogger(__name__)

Listener = Callable[[str, ProcessState], None]

STATUS_COMPLETED = "completed"
STATUS_IN_PROGRESS = "in_progress"
STATUS_FAILED = "failed"


@dataclass
class ProcessResult:
    process_id: str
    status: str
    state: ProcessState
    result: Optional[int] = None
    reason: Optional[str] = None


class _Entry:
    __slots__ = ("process", "lock", "deleted")

    def __init__(self, process: Process):
        self.process = process
        self.lock = threading.Lock()
        self.deleted = False


class ProcessStore:
    def __init__(self, self_address: str):
        self.self_address = normalize_address(self_address)
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # listeners
    # ------------------------------------------------------------------
    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self, process_id: str, transitions: Sequence[ProcessState]) -> None:
        for state in transitions:
            logger.debug("[store] %s -> %s", process_id, state.value)
            for listener in list(self._listeners):
                try:
                    listener(process_id, state)
                except Exception:
                    logger.exception("[store] listener failed on %s -> %s", process_id, state.value)

    def _entry(self, process_id: str) -> _Entry:
        with self._lock:
            entry = self._entries.get(process_id)
        if entry is None:
            raise ProcessNotFound(process_id)
        return entry

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------
    def create(
        self,
        process_id: str,
        peer_addresses: Sequence[str],
        threshold: int,
        local_input: Optional[int] = None,
    ) -> Process:
        process, transitions = new_process(
            process_id, peer_addresses, threshold, self.self_address, local_input
        )
        snapshot = process.snapshot()
        with self._lock:
            if process_id in self._entries:
                raise AlreadyExists(process_id)
            self._entries[process_id] = _Entry(process)
        logger.info("[store] created process %s (n=%d, t=%d)", process_id, process.n, threshold)
        self._notify(process_id, transitions)
        return snapshot

    def merge_share(self, process_id: str, phase: Phase, origin: str, share: Share) -> MergeResult:
        """Insert a share and run the transitions it enables, atomically."""
        entry = self._entry(process_id)
        violation: Optional[ProtocolViolation] = None
        with entry.lock:
            if entry.deleted:
                raise ProcessNotFound(process_id)
            try:
                result = _merge_share(entry.process, phase, origin, share)
            except ProtocolViolation as e:
                violation = e
                result = MergeResult(REJECTED, _fail(entry.process, str(e)))
            result.process = entry.process.snapshot()

        if ProcessState.COMPLETED in result.transitions:
            logger.info(
                "[store] process %s completed in %.2fs",
                process_id, time.time() - result.process.created_at,
            )
        self._notify(process_id, result.transitions)
        if violation is not None:
            logger.error("[store] process %s failed: %s", process_id, violation)
            raise violation
        return result

    def fail(self, process_id: str, reason: str) -> Process:
        entry = self._entry(process_id)
        with entry.lock:
            transitions = _fail(entry.process, reason)
            snapshot = entry.process.snapshot()
        if transitions:
            logger.error("[store] process %s failed: %s", process_id, reason)
        self._notify(process_id, transitions)
        return snapshot

    def delete(self, process_id: str) -> None:
        with self._lock:
            entry = self._entries.pop(process_id, None)
        if entry is None:
            raise ProcessNotFound(process_id)
        with entry.lock:
            entry.deleted = True
        logger.info("[store] deleted process %s", process_id)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get(self, process_id: str) -> Process:
        entry = self._entry(process_id)
        with entry.lock:
            return entry.process.snapshot()

    def list_ids(self, active_only: bool = False) -> List[str]:
        with self._lock:
            entries = list(self._entries.items())
        ids = []
        for process_id, entry in entries:
            with entry.lock:
                if active_only and entry.process.is_terminal:
                    continue
            ids.append(process_id)
        return ids

    def input_share_for(self, process_id: str, requester: str) -> Share:
        entry = self._entry(process_id)
        with entry.lock:
            return _input_share_for(entry.process, requester)

    def sum_share(self, process_id: str) -> Share:
        entry = self._entry(process_id)
        with entry.lock:
            share = entry.process.outgoing_sum_share_advertised
        if share is None:
            raise NotReady(f"sum share of process {process_id} not computed yet")
        return share

    def result(self, process_id: str) -> ProcessResult:
        process = self.get(process_id)
        if process.state is ProcessState.COMPLETED:
            return ProcessResult(process_id, STATUS_COMPLETED, process.state, result=process.final_result)
        if process.state is ProcessState.FAILED:
            return ProcessResult(process_id, STATUS_FAILED, process.state, reason=process.failure_reason)
        return ProcessResult(process_id, STATUS_IN_PROGRESS, process.state)
