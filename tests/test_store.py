import threading

import pytest

from mpcsum.errors import AlreadyExists, DuplicatePoint, NotReady, ProcessNotFound
from mpcsum.mpc_core import P, Share
from mpcsum.process import ACCEPTED, REJECTED, Phase, ProcessState
from mpcsum.store import STATUS_COMPLETED, STATUS_FAILED, STATUS_IN_PROGRESS, ProcessStore

PEERS = ["http://a", "http://b", "http://c"]


def stores(inputs, t):
    out = {addr: ProcessStore(addr) for addr in PEERS}
    for addr, x in zip(PEERS, inputs):
        out[addr].create("p1", PEERS, t, x)
    return out


def test_create_and_duplicate_id():
    s = ProcessStore("http://a")
    proc = s.create("p1", PEERS, 2, 3)
    assert proc.state is ProcessState.COLLECTING_INPUT_SHARES
    with pytest.raises(AlreadyExists):
        s.create("p1", PEERS, 2, 3)
    assert s.list_ids() == ["p1"]


def test_listeners_see_transitions_in_order():
    s = ProcessStore("http://a")
    seen = []
    s.subscribe(lambda pid, state: seen.append((pid, state)))
    s.create("solo", ["http://a"], 1, 5)
    assert [state for _, state in seen] == [
        ProcessState.CREATED,
        ProcessState.COLLECTING_INPUT_SHARES,
        ProcessState.INPUT_COMPLETE,
        ProcessState.COLLECTING_SUM_SHARES,
        ProcessState.COMPLETED,
    ]


def test_failing_listener_does_not_break_store():
    s = ProcessStore("http://a")

    def boom(pid, state):
        raise RuntimeError("listener bug")

    s.subscribe(boom)
    s.create("solo", ["http://a"], 1, 5)
    assert s.result("solo").result == 5


def test_sum_share_not_ready_then_ready():
    nodes = stores([5, 7, 9], 2)
    a = nodes["http://a"]
    with pytest.raises(NotReady):
        a.sum_share("p1")
    for other in ("http://b", "http://c"):
        a.merge_share("p1", Phase.INPUT, other, nodes[other].input_share_for("p1", "http://a"))
    assert a.sum_share("p1").point == 1
    assert a.result("p1").status == STATUS_IN_PROGRESS


def test_conflict_fails_process_and_reraises():
    nodes = stores([5, 7, 9], 3)
    a = nodes["http://a"]
    share = nodes["http://b"].input_share_for("p1", "http://a")
    assert a.merge_share("p1", Phase.INPUT, "http://b", share).outcome == ACCEPTED
    with pytest.raises(DuplicatePoint):
        a.merge_share("p1", Phase.INPUT, "http://b", Share(share.point, (share.value + 1) % P))
    r = a.result("p1")
    assert r.status == STATUS_FAILED
    assert "conflicting" in r.reason


def test_unknown_process():
    s = ProcessStore("http://a")
    with pytest.raises(ProcessNotFound):
        s.get("nope")
    with pytest.raises(ProcessNotFound):
        s.merge_share("nope", Phase.INPUT, "http://b", Share(1, 1))
    with pytest.raises(ProcessNotFound):
        s.delete("nope")


def test_delete_and_list_active():
    s = ProcessStore("http://a")
    s.create("done", ["http://a"], 1, 1)
    s.create("open", PEERS, 2, 1)
    assert sorted(s.list_ids()) == ["done", "open"]
    assert s.list_ids(active_only=True) == ["open"]
    s.delete("open")
    assert s.list_ids() == ["done"]
    with pytest.raises(ProcessNotFound):
        s.input_share_for("open", "http://b")


def test_fail_keeps_first_reason():
    s = ProcessStore("http://a")
    s.create("p1", PEERS, 2, 1)
    s.fail("p1", "first")
    s.fail("p1", "second")
    assert s.result("p1").reason == "first"


def test_concurrent_merges_count_each_origin_once():
    n = 8
    peers = [f"http://n{i}" for i in range(n)]
    nodes = {addr: ProcessStore(addr) for addr in peers}
    for i, addr in enumerate(peers):
        nodes[addr].create("p1", peers, n, i + 1)

    me = nodes[peers[0]]
    outcomes = []
    lock = threading.Lock()

    def push(origin):
        share = nodes[origin].input_share_for("p1", peers[0])
        for _ in range(5):
            r = me.merge_share("p1", Phase.INPUT, origin, share)
            with lock:
                outcomes.append(r.outcome)

    threads = [threading.Thread(target=push, args=(o,)) for o in peers[1:] for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(ACCEPTED) == n - 1
    assert REJECTED not in outcomes
    proc = me.get("p1")
    assert len(proc.incoming_input_shares) == n
    assert proc.state is ProcessState.COLLECTING_SUM_SHARES
    expected = sum(nodes[o].input_share_for("p1", peers[0]).value for o in peers) % P
    assert proc.local_sum_share.value == expected


def test_result_completed():
    s = ProcessStore("http://a")
    s.create("solo", ["http://a"], 1, 12)
    r = s.result("solo")
    assert (r.status, r.state, r.result, r.reason) == (STATUS_COMPLETED, ProcessState.COMPLETED, 12, None)


def test_concurrent_sum_shares_complete_once():
    n, t = 6, 2
    peers = [f"http://n{i}" for i in range(n)]
    nodes = {addr: ProcessStore(addr) for addr in peers}
    for i, addr in enumerate(peers):
        nodes[addr].create("p1", peers, t, i + 1)
    for me in peers:
        for other in peers:
            if other != me:
                nodes[me].merge_share("p1", Phase.INPUT, other, nodes[other].input_share_for("p1", me))

    me = nodes[peers[0]]
    completed = []

    def on_transition(pid, state):
        if state is ProcessState.COMPLETED:
            completed.append(pid)

    me.subscribe(on_transition)

    def push(origin):
        share = nodes[origin].sum_share("p1")
        for _ in range(5):
            me.merge_share("p1", Phase.SUM, origin, share)

    threads = [threading.Thread(target=push, args=(o,)) for o in peers[1:] for _ in range(3)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    assert completed == ["p1"]
    proc = me.get("p1")
    assert proc.state is ProcessState.COMPLETED
    assert proc.final_result == sum(range(1, n + 1))
    # exactly t sum shares were needed; late ones did not touch the result
    for origin in peers[1:]:
        me.merge_share("p1", Phase.SUM, origin, nodes[origin].sum_share("p1"))
    assert me.result("p1").result == sum(range(1, n + 1))
