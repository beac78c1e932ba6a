"""
Tenant access serialization

Selecting a tenant changes the active schema of the shared registry. Storage calls that depend on
the active schema are bracketed by a ticket of the TenantAccessSerializer: tickets are activated one
at a time, in the order they were queued, for every tenant alike.

    with serializer.access(tenant, registry):
        storage.find_all(...)
"""
from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field

import sacrud
from .config import is_multitenant
from .util import generate_id


@dataclass
class AccessTicket:
    id: str
    queued_at: float = field(default_factory=time.monotonic)
    activated: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)


class TenantAccessSerializer:
    def __init__(self) -> None:
        self._waiting = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._waiting)

    @property
    def active(self):
        with self._lock:
            return self._waiting[0].id if self._waiting else None

    def acquire(self) -> str:
        """
        Queue a ticket and block until it is at the front of the queue
        :return: ticket id
        """
        ticket = AccessTicket(generate_id())
        with self._lock:
            self._waiting.append(ticket)
            if len(self._waiting) == 1:
                ticket.activated.set()
        ticket.activated.wait()
        return ticket.id

    def release(self, ticket_id: str) -> None:
        """
        Remove the ticket and activate the next one in line
        """
        with self._lock:
            ticket = next((ticket for ticket in self._waiting if ticket.id == ticket_id), None)
            if ticket is None:
                sacrud.log.warning(f"Released unknown access ticket {ticket_id}")
                return
            self._waiting.remove(ticket)
            if self._waiting:
                self._waiting[0].activated.set()

    @contextmanager
    def access(self, tenant=None, registry=None):
        """
        Bracket a storage call: hold a ticket and select the `tenant` schema,
        a no-op when multitenancy is disabled
        """
        if not is_multitenant():
            yield None
            return
        ticket_id = self.acquire()
        try:
            if tenant is not None and registry is not None:
                registry.change_tenant(tenant)
            yield ticket_id
        finally:
            self.release(ticket_id)


serializer = TenantAccessSerializer()
