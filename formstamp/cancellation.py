from __future__ import annotations

import threading

from .errors import RenderCancelledError


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a worker.

    Workers call ``raise_if_cancelled`` at their suspension points (document
    load, page iteration, background decode, font fetch, between fields).
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, committed: int = 0) -> None:
        if self._event.is_set():
            raise RenderCancelledError(committed)


def check(token: CancellationToken | None, committed: int = 0) -> None:
    if token is not None:
        token.raise_if_cancelled(committed)
