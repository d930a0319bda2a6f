"""Failures raised by the catalog, ledger and billing services.

Each one is scoped to the single action that triggered it; the HTTP layer
maps them to status codes.
"""


class PosError(Exception):
    pass


class ValidationError(PosError):
    """Bad input: non-positive price or quantity, missing field, duplicate key."""


class NotFoundError(PosError):
    pass


class InsufficientStock(PosError):
    def __init__(self, product_id: int, shortfall: int, available: int = 0):
        self.product_id = product_id
        self.shortfall = shortfall
        self.available = available
        super().__init__(
            f"Insufficient stock for product_id={product_id}. "
            f"Available={available}, short by {shortfall}"
        )


class PersistenceError(PosError):
    """Storage unavailable or a write failed; nothing was applied."""
