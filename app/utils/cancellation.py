"""
Cancellation tokens for catalog and list lookups.

A token is captured when a lookup starts and checked when its result
arrives. Results for a cancelled token are dropped instead of applied.

Usage:
    sequencer = RequestSequencer()

    token = sequencer.next('products')     # cancels the previous 'products' token
    items = client.search_products(query)
    if token.cancelled:
        return  # superseded by a newer search
"""
import itertools
import threading
from typing import Dict, Optional


class CancellationToken:
    """Flag shared between the caller that starts a lookup and the code applying its result."""

    def __init__(self, channel: str = None, sequence: int = 0):
        self.channel = channel
        self.sequence = sequence
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def __repr__(self):
        state = 'cancelled' if self.cancelled else 'live'
        return f'<CancellationToken {self.channel}#{self.sequence} {state}>'


class RequestSequencer:
    """
    Issues monotonically numbered tokens per channel.

    Issuing a new token on a channel cancels the one issued before it, so a
    slow response to an older query can never overwrite a newer one.
    """

    def __init__(self):
        self._counter = itertools.count(1)
        self._current: Dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def next(self, channel: str) -> CancellationToken:
        with self._lock:
            token = CancellationToken(channel, next(self._counter))
            previous = self._current.get(channel)
            if previous is not None:
                previous.cancel()
            self._current[channel] = token
            return token

    def current(self, channel: str) -> Optional[CancellationToken]:
        return self._current.get(channel)

    def is_current(self, token: CancellationToken) -> bool:
        return self._current.get(token.channel) is token and not token.cancelled

    def cancel_all(self) -> None:
        """Cancel every outstanding token (the editor was closed)."""
        with self._lock:
            for token in self._current.values():
                token.cancel()
            self._current.clear()
