import pytest
from coprocs.core.errors import LifecycleError, ProtocolError, ResourceExhausted
from coprocs.core.process_manager import WorkerState
from coprocs.services import KVClient, LeaseStatus, ResourceManagerClient


def test_kv_session(manager):
    kv = KVClient(manager=manager, timeout=10).start()
    assert kv.request("SET name John") == "OK"
    assert kv.request("GET name") == "VALUE John"
    assert kv.quit() == "BYE"
    assert kv.state is WorkerState.TERMINATED
    assert kv.worker.channel.closed
    assert manager.workers() == []


def test_kv_typed_helpers(manager):
    with KVClient(manager=manager, timeout=10) as kv:
        assert kv.get("missing") is None
        kv.set("b", "two words")
        kv.set("a", "1")
        assert kv.get("b") == "two words"
        assert sorted(kv.list_keys()) == ["a", "b"]
        assert kv.request("DELETE a") == "ERROR Unknown command"
        assert kv.request("SET lonely") == "ERROR Missing argument"
        with pytest.raises(ValueError):
            kv.set("has space", "x")
    assert kv.state is WorkerState.TERMINATED


def test_requests_after_quit_fail(manager):
    kv = KVClient(manager=manager, timeout=10).start()
    kv.quit()
    with pytest.raises(LifecycleError):
        kv.request("LIST")
    # quit and close are both safe to repeat
    assert kv.quit() is None
    kv.close()


def test_lease_exhaustion_and_reuse(manager):
    with ResourceManagerClient(max_leases=3, manager=manager, timeout=10) as rm:
        leases = [rm.acquire() for _ in range(3)]
        assert len(set(leases)) == 3
        with pytest.raises(ResourceExhausted):
            rm.acquire()
        assert rm.try_acquire() is None
        assert rm.status() == LeaseStatus(active=3, available=0)
        rm.release(leases[1])
        fresh = rm.acquire()
        assert fresh not in leases
        assert rm.status().capacity == 3


def test_lease_double_release(manager):
    with ResourceManagerClient(max_leases=1, manager=manager, timeout=10) as rm:
        lease = rm.acquire()
        rm.release(lease)
        with pytest.raises(ProtocolError) as ei:
            rm.release(lease)
        assert not isinstance(ei.value, ResourceExhausted)
        assert rm.status() == LeaseStatus(active=0, available=1)


def test_lease_quit_without_reply(manager):
    rm = ResourceManagerClient(max_leases=2, manager=manager, timeout=10).start()
    rm.acquire()
    rm.quit()
    assert rm.state is WorkerState.TERMINATED
    assert rm.worker.process.returncode == 0
