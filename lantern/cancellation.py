"""Cooperative cancellation tokens with explicit ownership."""

import threading
from typing import Callable, List, Optional

from .errors import GenerationCancelled


class CancellationToken:
    """A one-way cancellation flag that can be waited on.

    A token created with a ``parent`` becomes cancelled when the parent is,
    but cancelling the child never touches the parent.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self._unlink: Optional[Callable[[], None]] = None
        if parent is not None:
            self._unlink = parent.on_cancel(self._fire)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._fire()

    def _fire(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` once on cancellation. Returns an unregister function."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                registered = True
            else:
                registered = False
        if not registered:
            callback()
            return lambda: None

        def unregister() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unregister

    def detach(self) -> None:
        """Stop following the parent token."""
        if self._unlink is not None:
            self._unlink()
            self._unlink = None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or ``timeout`` seconds pass. Returns the flag."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled("Operation cancelled")


class CancellationHandle:
    """A token tagged with whether its holder owns it.

    Only an owned handle may fire its token. A borrowed handle wraps a token
    that belongs to someone else and can only be observed.
    """

    def __init__(self, token: CancellationToken, owned: bool):
        self.token = token
        self.owned = owned

    @classmethod
    def create(cls) -> "CancellationHandle":
        return cls(CancellationToken(), owned=True)

    @classmethod
    def borrow(cls, token: CancellationToken) -> "CancellationHandle":
        return cls(token, owned=False)

    @property
    def is_cancelled(self) -> bool:
        return self.token.is_cancelled

    def cancel(self) -> None:
        if not self.owned:
            raise RuntimeError("Cannot cancel a borrowed token; only its owner may")
        self.token.cancel()

    def linked_signal(self) -> CancellationToken:
        """The token a worker should observe, always owned by the handle's holder.

        For an owned handle this is the token itself. For a borrowed handle it
        is a private child that follows the external token, so the holder can
        stop its own work without firing the caller's signal.
        """
        if self.owned:
            return self.token
        return CancellationToken(parent=self.token)
