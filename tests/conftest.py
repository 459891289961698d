import pytest

from mpcsum.network import LocalPeerClient
from mpcsum.poller import PollerManager, PollerSettings
from mpcsum.store import ProcessStore
from mpcsum.sum import local_addresses

FAST = PollerSettings(poll_interval=0.02, phase_timeout=5.0, backoff_max=0.1, max_not_found=3)


class Cluster:
    """In-process nodes wired together with LocalPeerClient."""

    def __init__(self, n, settings=FAST, offline=()):
        self.addresses = local_addresses(n)
        self.nodes = {}
        self.managers = []
        for i, addr in enumerate(self.addresses):
            if i in offline:
                continue
            store = ProcessStore(addr)
            self.nodes[addr] = store
            self.managers.append(PollerManager(store, LocalPeerClient(addr, self.nodes), settings))

    def store(self, i):
        return self.nodes[self.addresses[i]]

    def shutdown(self):
        for m in self.managers:
            m.shutdown()


@pytest.fixture
def cluster():
    made = []

    def make(n, settings=FAST, offline=()):
        c = Cluster(n, settings, offline)
        made.append(c)
        return c

    yield make
    for c in made:
        c.shutdown()
