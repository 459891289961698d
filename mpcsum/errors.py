# mpcsum/errors.py
"""Error taxonomy shared by the sharing engine, the store and the poller."""


class MpcError(Exception):
    """Base class for every protocol error raised by mpcsum."""


class DivisionByZero(MpcError):
    """Inverse of zero requested; only a programming error can get here."""


class InsufficientShares(MpcError):
    def __init__(self, have: int, need: int):
        super().__init__(f"not enough shares: got {have}/{need}")
        self.have = have
        self.need = need


class ProtocolViolation(MpcError):
    """A peer sent something an honest peer never would. Fatal for the process."""


class DuplicatePoint(ProtocolViolation):
    def __init__(self, point: int, origin: str = ""):
        where = f" from {origin}" if origin else ""
        super().__init__(f"conflicting values at point {point}{where}")
        self.point = point
        self.origin = origin


class UnknownPeer(ProtocolViolation):
    def __init__(self, address: str):
        super().__init__(f"peer {address} is not part of the process")
        self.address = address


class InvalidPhase(MpcError):
    """Share arrived for a phase this peer has not reached yet."""


class NotReady(MpcError):
    """The requested share has not been generated yet; retry later."""


class PeerUnreachable(MpcError):
    """Transport level failure talking to a peer; retried with backoff."""


class PeerNotFound(MpcError):
    """A peer keeps answering that it does not know the process."""


class Timeout(MpcError):
    """A phase did not complete within its deadline."""


class AlreadyExists(MpcError):
    def __init__(self, process_id: str):
        super().__init__(f"process {process_id} already exists")
        self.process_id = process_id


class ProcessNotFound(MpcError):
    def __init__(self, process_id: str):
        super().__init__(f"process {process_id} not found")
        self.process_id = process_id
