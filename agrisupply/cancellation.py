"""Cooperative cancellation for in-flight pipeline requests."""
from __future__ import annotations

import threading
from collections import OrderedDict
from functools import lru_cache
from typing import Dict, Optional

from .model import ResultStatus


class OperationCancelled(Exception):
    """Raised when a superseded request reaches a cancellation check."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True as soon as the token is cancelled."""

        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


class RequestSlots:
    """Keeps at most one outstanding request per context id.

    Claiming a slot cancels whatever request previously held it. Terminal
    statuses are kept for the ``max_finished`` most recently finished
    contexts only.
    """

    def __init__(self, max_finished: int = 1024) -> None:
        self.max_finished = max_finished
        self._lock = threading.Lock()
        self._tokens: Dict[str, CancellationToken] = {}
        self._finished: OrderedDict[str, ResultStatus] = OrderedDict()

    def claim(self, context_id: str) -> CancellationToken:
        token = CancellationToken()
        with self._lock:
            previous = self._tokens.get(context_id)
            self._tokens[context_id] = token
            self._finished.pop(context_id, None)
        if previous is not None:
            previous.cancel()
        return token

    def finish(self, context_id: str, token: CancellationToken, status: ResultStatus) -> None:
        """Record the terminal status of ``token``'s request if it still holds the slot."""

        with self._lock:
            if self._tokens.get(context_id) is not token:
                return
            del self._tokens[context_id]
            self._finished[context_id] = status
            while len(self._finished) > self.max_finished:
                self._finished.popitem(last=False)

    def status(self, context_id: str) -> Optional[ResultStatus]:
        with self._lock:
            if context_id in self._tokens:
                return ResultStatus.loading
            return self._finished.get(context_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens) + len(self._finished)


@lru_cache(maxsize=1)
def get_request_slots() -> RequestSlots:
    """Return the process-wide request slot registry."""

    return RequestSlots()
