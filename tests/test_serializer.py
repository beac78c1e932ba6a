import threading
import time
from types import SimpleNamespace

import pytest

from sacrud import SACRUD
from sacrud.serializer import TenantAccessSerializer


def _wait_for(condition, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        assert time.monotonic() < deadline, "timed out"
        time.sleep(0.005)


def test_tickets_are_activated_in_queue_order() -> None:
    serializer = TenantAccessSerializer()
    events = []

    def worker(name: str, work: float) -> None:
        ticket_id = serializer.acquire()
        events.append(f"{name} start")
        time.sleep(work)
        events.append(f"{name} end")
        serializer.release(ticket_id)

    first = serializer.acquire()
    assert serializer.active == first

    # t2 works longer than t3, t3 still has to wait for it
    t2 = threading.Thread(target=worker, args=("t2", 0.05))
    t2.start()
    _wait_for(lambda: len(serializer) == 2)
    t3 = threading.Thread(target=worker, args=("t3", 0.0))
    t3.start()
    _wait_for(lambda: len(serializer) == 3)

    assert events == []
    serializer.release(first)
    t2.join(5)
    t3.join(5)
    assert events == ["t2 start", "t2 end", "t3 start", "t3 end"]
    assert len(serializer) == 0


def test_access_releases_on_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(SACRUD, "MULTITENANT_ENABLED", True)
    serializer = TenantAccessSerializer()
    tenants = []
    registry = SimpleNamespace(change_tenant=tenants.append)

    with pytest.raises(RuntimeError):
        with serializer.access("acme", registry):
            assert len(serializer) == 1
            raise RuntimeError("storage failure")

    assert len(serializer) == 0
    assert tenants == ["acme"]
    with serializer.access("other", registry) as ticket_id:
        assert serializer.active == ticket_id
    assert tenants == ["acme", "other"]


def test_access_is_a_noop_without_multitenancy(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(SACRUD, "MULTITENANT_ENABLED", False)
    serializer = TenantAccessSerializer()
    tenants = []
    with serializer.access("acme", SimpleNamespace(change_tenant=tenants.append)) as ticket_id:
        assert ticket_id is None
        assert len(serializer) == 0
    assert tenants == []


def test_release_of_unknown_ticket_is_ignored() -> None:
    serializer = TenantAccessSerializer()
    ticket_id = serializer.acquire()
    serializer.release("unknown")
    assert serializer.active == ticket_id
    serializer.release(ticket_id)
    assert serializer.active is None
