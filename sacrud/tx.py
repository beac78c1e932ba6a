# -*- coding: utf-8 -*-

"""Caller managed transactions.

A transaction is a dedicated SQLAlchemy session with an open transaction, addressed
by a random id so it can be threaded through several engine calls:

    transaction_id = transactions.start()
    users.create(dto, transaction_id=transaction_id)
    books.bulk_create(dtos, transaction_id=transaction_id)
    transactions.commit(transaction_id)

Engine calls made with a transaction id only flush, calls without one commit ``DB.session``.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional

from sqlalchemy.orm import Session

import sacrud
from .errors import NotFoundError
from .util import generate_id


class TransactionRegistry:
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def start(self) -> str:
        """Open a session on the bound database and return the transaction id."""
        session = sacrud.DB.session.session_factory()
        session.begin()
        transaction_id = generate_id()
        with self._lock:
            self._sessions[transaction_id] = session
        sacrud.log.debug(f"Transaction {transaction_id} started")
        return transaction_id

    def get(self, transaction_id: Optional[str]) -> Optional[Session]:
        if transaction_id is None:
            return None
        with self._lock:
            return self._sessions.get(transaction_id)

    def commit(self, transaction_id: str) -> None:
        session = self._pop(transaction_id)
        try:
            session.commit()
        finally:
            session.close()
        sacrud.log.debug(f"Transaction {transaction_id} committed")

    def rollback(self, transaction_id: str) -> None:
        session = self._pop(transaction_id)
        try:
            session.rollback()
        finally:
            session.close()
        sacrud.log.debug(f"Transaction {transaction_id} rolled back")

    def __contains__(self, transaction_id) -> bool:
        with self._lock:
            return transaction_id in self._sessions

    def _pop(self, transaction_id: str) -> Session:
        with self._lock:
            session = self._sessions.pop(transaction_id, None)
        if session is None:
            raise NotFoundError(f"Transaction {transaction_id} does not exist")
        return session


transactions = TransactionRegistry()
