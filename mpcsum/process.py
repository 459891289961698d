# mpcsum/process.py
"""Addition process record and the transitions that drive it.

Each peer keeps one `Process` per process id. The functions in this module
mutate a record in place and must be called while the caller holds the
record's exclusive lock (see `store.ProcessStore`). They return the list of
states entered so that the store can notify listeners after unlocking.

Round one is purely local: once every peer's input share is in, this peer
adds them up, which gives its point on the sum polynomial. Round two
collects those sum shares and interpolates the total at x = 0.
"""
import re
import secrets
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import DuplicatePoint, InvalidPhase, ProtocolViolation, UnknownPeer
from .mpc_core.field import P, field_sum
from .mpc_core.shamir import Share, generate_shares, reconstruct_secret

INPUT_BOUND = 2**16  # default local inputs are drawn from [0, INPUT_BOUND)

# ids travel as one URL path segment between peers
PROCESS_ID_RE = re.compile(r"[A-Za-z0-9_-]{1,128}")


class ProcessState(str, Enum):
    CREATED = "created"
    COLLECTING_INPUT_SHARES = "collecting_input_shares"
    INPUT_COMPLETE = "input_complete"
    COLLECTING_SUM_SHARES = "collecting_sum_shares"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({ProcessState.COMPLETED, ProcessState.FAILED})


class Phase(str, Enum):
    INPUT = "input"
    SUM = "sum"


ACCEPTED = "accepted"
DUPLICATE = "duplicate"
IGNORED = "ignored"
REJECTED = "rejected"


def normalize_address(address: str) -> str:
    return address.strip().rstrip("/")


@dataclass(frozen=True)
class Peer:
    address: str
    point: int  # x-coordinate used for this peer in every sharing


def build_peers(addresses: Sequence[str]) -> Tuple[Peer, ...]:
    """Ordered peer set; the evaluation point is the 1-based position."""
    normalized = [normalize_address(a) for a in addresses]
    if not normalized:
        raise ValueError("peer set must contain at least one peer")
    if any(not a for a in normalized):
        raise ValueError("peer addresses must be non-empty")
    if len(set(normalized)) != len(normalized):
        raise ValueError("peer addresses must be unique")
    return tuple(Peer(address=a, point=i) for i, a in enumerate(normalized, start=1))


@dataclass
class Process:
    id: str
    peers: Tuple[Peer, ...]
    threshold: int
    self_address: str
    local_input: int
    outgoing_input_shares: Dict[str, Share]
    incoming_input_shares: Dict[str, Share] = field(default_factory=dict)
    local_sum_share: Optional[Share] = None
    incoming_sum_shares: Dict[str, Share] = field(default_factory=dict)
    final_result: Optional[int] = None
    state: ProcessState = ProcessState.CREATED
    failure_reason: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    phase_started_at: float = field(default_factory=time.time)

    @property
    def n(self) -> int:
        return len(self.peers)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def self_peer(self) -> Peer:
        return self.peer(self.self_address)

    @property
    def outgoing_sum_share_advertised(self) -> Optional[Share]:
        return self.local_sum_share

    def peer(self, address: str) -> Peer:
        address = normalize_address(address)
        for p in self.peers:
            if p.address == address:
                return p
        raise UnknownPeer(address)

    def incoming(self, phase: Phase) -> Dict[str, Share]:
        return self.incoming_input_shares if phase is Phase.INPUT else self.incoming_sum_shares

    def phase_complete(self, phase: Phase) -> bool:
        if phase is Phase.INPUT:
            return self.local_sum_share is not None
        return self.final_result is not None

    def missing_peers(self, phase: Phase) -> List[Peer]:
        """Remote peers whose share for `phase` has not been admitted yet."""
        have = self.incoming(phase)
        return [p for p in self.peers if p.address != self.self_address and p.address not in have]

    def snapshot(self) -> "Process":
        return replace(
            self,
            outgoing_input_shares=dict(self.outgoing_input_shares),
            incoming_input_shares=dict(self.incoming_input_shares),
            incoming_sum_shares=dict(self.incoming_sum_shares),
        )


@dataclass
class MergeResult:
    outcome: str
    transitions: List[ProcessState] = field(default_factory=list)
    process: Optional[Process] = None


def _enter(process: Process, state: ProcessState, transitions: List[ProcessState]) -> None:
    process.state = state
    if state in (ProcessState.COLLECTING_INPUT_SHARES, ProcessState.COLLECTING_SUM_SHARES):
        process.phase_started_at = time.time()
    transitions.append(state)


def _ordered_sum_shares(process: Process) -> List[Share]:
    own = process.incoming_sum_shares[process.self_address]
    others = sorted(
        (s for a, s in process.incoming_sum_shares.items() if a != process.self_address),
        key=lambda s: s.point,
    )
    return [own] + others


def _advance(process: Process, transitions: List[ProcessState]) -> None:
    """Run the automatic transitions that are enabled by the current record."""
    if (
        process.state is ProcessState.COLLECTING_INPUT_SHARES
        and len(process.incoming_input_shares) == process.n
    ):
        _enter(process, ProcessState.INPUT_COMPLETE, transitions)
        # share homomorphism: sum of the input shares at our point is our
        # point on the sum polynomial
        point = process.self_peer.point
        process.local_sum_share = Share(
            point=point,
            value=field_sum(s.value for s in process.incoming_input_shares.values()),
        )
        process.incoming_sum_shares[process.self_address] = process.local_sum_share
        _enter(process, ProcessState.COLLECTING_SUM_SHARES, transitions)

    if (
        process.state is ProcessState.COLLECTING_SUM_SHARES
        and process.final_result is None
        and len(process.incoming_sum_shares) >= process.threshold
    ):
        process.final_result = reconstruct_secret(_ordered_sum_shares(process), t=process.threshold)
        _enter(process, ProcessState.COMPLETED, transitions)


def new_process(
    process_id: str,
    peer_addresses: Sequence[str],
    threshold: int,
    self_address: str,
    local_input: Optional[int] = None,
) -> Tuple[Process, List[ProcessState]]:
    """Create this peer's record for a new addition process.

    Draws the private input (unless one is supplied), shares it across the
    peer set and admits its own input share. A single-peer process runs
    straight through to COMPLETED.
    """
    if not PROCESS_ID_RE.fullmatch(process_id):
        raise ValueError(f"invalid process id {process_id!r}: use 1-128 of [A-Za-z0-9_-]")
    peers = build_peers(peer_addresses)
    self_address = normalize_address(self_address)
    if self_address not in {p.address for p in peers}:
        raise ValueError(f"node {self_address} is not part of the peer set")
    if not 1 <= threshold <= len(peers):
        raise ValueError(f"invalid threshold: t={threshold}, n={len(peers)}")
    if local_input is None:
        local_input = secrets.randbelow(INPUT_BOUND)
    elif not 0 <= local_input < P:
        raise ValueError("input must be a field scalar in [0, P)")

    shares = generate_shares(local_input, [p.point for p in peers], threshold)
    process = Process(
        id=process_id,
        peers=peers,
        threshold=threshold,
        self_address=self_address,
        local_input=local_input,
        outgoing_input_shares={p.address: s for p, s in zip(peers, shares)},
    )
    transitions = [ProcessState.CREATED]
    process.incoming_input_shares[self_address] = process.outgoing_input_shares[self_address]
    _enter(process, ProcessState.COLLECTING_INPUT_SHARES, transitions)
    _advance(process, transitions)
    return process, transitions


def merge_share(process: Process, phase: Phase, origin: str, share: Share) -> MergeResult:
    """Admit `share` sent by `origin` for `phase`.

    Admission is idempotent per origin: the same share twice is a no-op, a
    different value for an admitted origin raises DuplicatePoint.
    """
    if process.is_terminal:
        return MergeResult(IGNORED)

    sender = process.peer(origin)
    if phase is Phase.INPUT:
        expected_point = process.self_peer.point
        phase_open = process.state is ProcessState.COLLECTING_INPUT_SHARES
    else:
        if process.state in (
            ProcessState.CREATED,
            ProcessState.COLLECTING_INPUT_SHARES,
            ProcessState.INPUT_COMPLETE,
        ):
            raise InvalidPhase(f"process {process.id} is still in {process.state.value}")
        expected_point = sender.point
        phase_open = process.state is ProcessState.COLLECTING_SUM_SHARES

    if share.point % P != expected_point:
        raise ProtocolViolation(
            f"{phase.value} share from {sender.address} at point {share.point}, expected {expected_point}"
        )

    incoming = process.incoming(phase)
    value = share.value % P
    existing = incoming.get(sender.address)
    if existing is not None:
        if existing.value != value:
            raise DuplicatePoint(expected_point, sender.address)
        return MergeResult(DUPLICATE)
    if not phase_open:
        return MergeResult(IGNORED)

    incoming[sender.address] = Share(expected_point, value)
    transitions: List[ProcessState] = []
    _advance(process, transitions)
    return MergeResult(ACCEPTED, transitions)


def fail(process: Process, reason: str) -> List[ProcessState]:
    if process.is_terminal:
        return []
    process.failure_reason = reason
    transitions: List[ProcessState] = []
    _enter(process, ProcessState.FAILED, transitions)
    return transitions


def input_share_for(process: Process, requester: str) -> Share:
    """Share of our input destined to `requester` (served to polling peers)."""
    peer = process.peer(requester)
    return process.outgoing_input_shares[peer.address]
