"""Cart backend port for the local cart mirror.

A backend performs cart operations against the authoritative server and
returns the server's full cart snapshot (the ``CartResponse`` shape of the
HTTP API) after each one.
"""

from abc import ABC, abstractmethod


class BackendUnavailable(Exception):
    """The server could not be reached or failed; the change may be retried later."""


class CartRejected(Exception):
    """The server definitively refused the change (validation or conflict)."""

    def __init__(self, status_code: int, code: str, message: str, fields: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.fields = fields or {}


class CartBackend(ABC):
    @abstractmethod
    def fetch(self) -> dict | None:
        """Return the current server cart, or None when the customer has none."""
        ...

    @abstractmethod
    def add_item(self, product_id: str, item_type: str, quantity: int, rental=None, service=None) -> dict: ...

    @abstractmethod
    def update_item(self, item_id: str, changes: dict) -> dict: ...

    @abstractmethod
    def remove_item(self, item_id: str) -> dict: ...

    @abstractmethod
    def clear(self) -> dict: ...
