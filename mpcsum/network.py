# mpcsum/network.py
"""Fetching shares from other peers.

`HttpPeerClient` talks to the share endpoints of `mpcsum.server` with
`requests`. `LocalPeerClient` resolves addresses to in-process stores and
is what the local simulation runs on.
"""
from enum import Enum
from typing import Dict, Optional, Union

import requests

from .errors import NotReady, PeerUnreachable, ProcessNotFound, UnknownPeer
from .mpc_core.shamir import Share
from .process import normalize_address
from .store import ProcessStore

PEER_HEADER = "X-Peer-Address"
HTTP_STATUS_NOT_READY = 425  # Too Early


class FetchStatus(Enum):
    NOT_READY = "not_ready"
    NOT_FOUND = "not_found"


NOT_READY = FetchStatus.NOT_READY
NOT_FOUND = FetchStatus.NOT_FOUND

FetchResult = Union[Share, FetchStatus]


def _strip0x(s: str) -> str:
    return s[2:] if s.lower().startswith("0x") else s


def scalar_to_hex(v: int) -> str:
    return f"0x{v:032x}"


def hex_to_scalar(h: str) -> int:
    return int(_strip0x(h.strip()), 16)


def share_to_json(share: Share) -> dict:
    return {"point": share.point, "value": scalar_to_hex(share.value)}


def share_from_json(data: dict) -> Share:
    return Share(point=int(data["point"]), value=hex_to_scalar(data["value"]))


class PeerClient:
    """Fetches this node's shares from a remote peer.

    Both methods return a Share, NOT_READY or NOT_FOUND and raise
    PeerUnreachable on transport failures.
    """

    def fetch_input_share(self, address: str, process_id: str) -> FetchResult:
        raise NotImplementedError

    def fetch_sum_share(self, address: str, process_id: str) -> FetchResult:
        raise NotImplementedError

    def close(self) -> None:
        pass


class HttpPeerClient(PeerClient):
    def __init__(self, self_address: str, timeout: float = 1.5, session: Optional[requests.Session] = None):
        self.self_address = normalize_address(self_address)
        self.timeout = timeout
        self.session = session or requests.Session()

    def _fetch(self, address: str, process_id: str, kind: str) -> FetchResult:
        url = f"{normalize_address(address)}/processes/{process_id}/{kind}"
        try:
            resp = self.session.get(url, headers={PEER_HEADER: self.self_address}, timeout=self.timeout)
        except requests.RequestException as e:
            raise PeerUnreachable(f"{url}: {e}") from e

        if resp.status_code == HTTP_STATUS_NOT_READY:
            return NOT_READY
        # 403: the peer does not count us in its peer set, same mismatch as 404
        if resp.status_code in (403, 404):
            return NOT_FOUND
        try:
            resp.raise_for_status()
            return share_from_json(resp.json())
        except requests.HTTPError as e:
            raise PeerUnreachable(f"{url}: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise PeerUnreachable(f"{url}: malformed share payload: {e}") from e

    def fetch_input_share(self, address: str, process_id: str) -> FetchResult:
        return self._fetch(address, process_id, "input-share")

    def fetch_sum_share(self, address: str, process_id: str) -> FetchResult:
        return self._fetch(address, process_id, "sum-share")

    def close(self) -> None:
        self.session.close()


class LocalPeerClient(PeerClient):
    """Routes fetches to stores living in the same interpreter.

    `nodes` maps an address to its ProcessStore and is usually shared by
    every client of a simulation; an address missing from it behaves like a
    peer that never answers.
    """

    def __init__(self, self_address: str, nodes: Dict[str, ProcessStore]):
        self.self_address = normalize_address(self_address)
        self.nodes = nodes

    def _store(self, address: str) -> ProcessStore:
        store = self.nodes.get(normalize_address(address))
        if store is None:
            raise PeerUnreachable(f"no node at {address}")
        return store

    def fetch_input_share(self, address: str, process_id: str) -> FetchResult:
        store = self._store(address)
        try:
            return store.input_share_for(process_id, self.self_address)
        except (ProcessNotFound, UnknownPeer):
            return NOT_FOUND

    def fetch_sum_share(self, address: str, process_id: str) -> FetchResult:
        store = self._store(address)
        try:
            store.get(process_id).peer(self.self_address)
            return store.sum_share(process_id)
        except (ProcessNotFound, UnknownPeer):
            return NOT_FOUND
        except NotReady:
            return NOT_READY
