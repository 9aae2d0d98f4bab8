"""
Exceptions raised by the order state machine.

These abort the current operation (order construction or creation) and are
never retried internally.  Everything else is *reported* through return values.
"""
from __future__ import annotations


class OrderError(Exception):
    """Base class for all order lifecycle errors."""


class InvalidKeyType(OrderError, ValueError):
    def __init__(self, key_type: str) -> None:
        self.key_type = key_type
        super().__init__(
            f"Key type {key_type!r} not supported; use rsa, ec, rsa-<bits> or ec-256/ec-384"
        )


class InvalidArgument(OrderError, ValueError):
    pass


class InvalidOrderStatus(OrderError):
    def __init__(self, order_url: str) -> None:
        self.order_url = order_url
        super().__init__(f"Order {order_url} has status 'invalid'")


class CreateFailed(OrderError):
    pass


class InvalidConfiguration(OrderError):
    pass
