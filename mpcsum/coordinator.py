# mpcsum/coordinator.py
"""
发起一次加法进程：把同一个创建请求发给所有节点，然后（可选）等待结果。

  python -m mpcsum.coordinator \
      --peers http://127.0.0.1:8001,http://127.0.0.1:8002,http://127.0.0.1:8003 \
      --threshold 2 --wait 30
"""
import argparse
import sys
import time
import uuid
from typing import Dict, List, Optional

import requests

from .process import normalize_address
from .store import STATUS_COMPLETED, STATUS_IN_PROGRESS


def create_everywhere(
    peers: List[str],
    threshold: int,
    process_id: str,
    inputs: Optional[List[int]] = None,
    timeout: float = 5.0,
    session: Optional[requests.Session] = None,
) -> Dict[str, Optional[str]]:
    """POST the creation request to every peer; returns address -> error (None if ok)."""
    http = session or requests.Session()
    errors: Dict[str, Optional[str]] = {}
    for i, addr in enumerate(peers):
        body = {"process_id": process_id, "peers": peers, "threshold": threshold}
        if inputs is not None:
            body["input"] = inputs[i]
        try:
            r = http.post(f"{addr}/processes", json=body, timeout=timeout)
            r.raise_for_status()
            errors[addr] = None
        except requests.RequestException as e:
            errors[addr] = str(e)
    return errors


def wait_results(
    peers: List[str],
    process_id: str,
    wait: float,
    interval: float = 0.5,
    timeout: float = 5.0,
    session: Optional[requests.Session] = None,
) -> Dict[str, dict]:
    http = session or requests.Session()
    results: Dict[str, dict] = {}
    deadline = time.monotonic() + wait
    while True:
        for addr in peers:
            if results.get(addr, {}).get("status", STATUS_IN_PROGRESS) != STATUS_IN_PROGRESS:
                continue
            try:
                r = http.get(f"{addr}/processes/{process_id}", timeout=timeout)
                r.raise_for_status()
                results[addr] = r.json()
            except requests.RequestException as e:
                results[addr] = {"status": STATUS_IN_PROGRESS, "reason": str(e)}
        done = all(r.get("status") != STATUS_IN_PROGRESS for r in results.values())
        if done or time.monotonic() >= deadline:
            return results
        time.sleep(interval)


def _parse_args(argv=None):
    ap = argparse.ArgumentParser(description="start a distributed addition process")
    ap.add_argument("--peers", required=True, help="comma separated node addresses, in point order")
    ap.add_argument("--threshold", "-t", type=int, required=True)
    ap.add_argument("--process-id", default=None)
    ap.add_argument("--inputs", default=None, help="comma separated inputs, one per peer (demo only)")
    ap.add_argument("--wait", type=float, default=0.0, help="seconds to wait for the results")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    peers = [normalize_address(p) for p in args.peers.split(",") if p.strip()]
    inputs = None
    if args.inputs:
        inputs = [int(x) for x in args.inputs.split(",")]
        if len(inputs) != len(peers):
            print(f"❌ got {len(inputs)} inputs for {len(peers)} peers")
            return 2
    process_id = args.process_id or uuid.uuid4().hex

    print(f"=== process {process_id}: n={len(peers)} t={args.threshold} ===")
    failed = False
    for addr, err in create_everywhere(peers, args.threshold, process_id, inputs).items():
        if err:
            failed = True
            print(f"❌ {addr}: {err}")
        else:
            print(f"✅ {addr}: created")
    if failed or args.wait <= 0:
        return 1 if failed else 0

    ok = True
    for addr, r in wait_results(peers, process_id, args.wait).items():
        if r.get("status") == STATUS_COMPLETED:
            print(f"✅ {addr}: sum = {r.get('result')}")
        else:
            ok = False
            print(f"⚠️ {addr}: {r.get('status')} {r.get('reason') or ''}")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
