# mpcsum/sum.py
"""本地模拟：N 个节点在同一进程里跑完整的求和协议（不走网络）。"""
import time
import uuid
from typing import Dict, Optional, Sequence

from .network import LocalPeerClient
from .poller import PollerManager, PollerSettings
from .store import ProcessResult, ProcessStore

SIM_SETTINGS = PollerSettings(poll_interval=0.05, phase_timeout=10.0, backoff_max=0.5)


def local_addresses(n: int):
    return [f"local://node-{i}" for i in range(1, n + 1)]


def simulate(
    inputs: Sequence[int],
    threshold: Optional[int] = None,
    settings: Optional[PollerSettings] = None,
    timeout: float = 15.0,
    offline: Sequence[int] = (),
    process_id: Optional[str] = None,
) -> Dict[str, ProcessResult]:
    """Run one addition process over len(inputs) in-process nodes.

    `offline` lists 0-based node indices that never start (every other node
    sees them as unreachable). Returns the result of every running node,
    keyed by its address.
    """
    n = len(inputs)
    threshold = n if threshold is None else threshold
    settings = settings or SIM_SETTINGS
    process_id = process_id or uuid.uuid4().hex
    addresses = local_addresses(n)

    nodes: Dict[str, ProcessStore] = {}
    managers = []
    for i, address in enumerate(addresses):
        if i in offline:
            continue
        store = ProcessStore(address)
        nodes[address] = store
        managers.append(PollerManager(store, LocalPeerClient(address, nodes), settings))

    try:
        for i, address in enumerate(addresses):
            if address in nodes:
                nodes[address].create(process_id, addresses, threshold, inputs[i])

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if all(s.get(process_id).is_terminal for s in nodes.values()):
                break
            time.sleep(settings.poll_interval)
        return {address: store.result(process_id) for address, store in nodes.items()}
    finally:
        for manager in managers:
            manager.shutdown()


if __name__ == "__main__":
    # 三方输入
    results = simulate([5, 7, 9])
    for address, r in results.items():
        print(f"{address}: {r.status} result={r.result}")
    print("Final Sum:", next(iter(results.values())).result)
