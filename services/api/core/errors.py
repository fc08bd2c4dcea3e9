"""
Ledger error taxonomy.

Core code raises these; routers translate them to HTTPException.
"""


class LedgerError(Exception):
    """Base class for all shift-ledger failures."""


class ValidationError(LedgerError, ValueError):
    """Bad board dims, empty batch, empty cart on save, ..."""


class YieldOutOfRangeError(LedgerError):
    def __init__(self, yield_percentage: int, min_yield: float, max_yield: float):
        self.yield_percentage = yield_percentage
        self.min_yield = min_yield
        self.max_yield = max_yield
        side = "above" if yield_percentage > max_yield else "below"
        super().__init__(
            f"Yield {yield_percentage}% is {side} the allowed range "
            f"[{min_yield:g}, {max_yield:g}]"
        )


class ShiftClosedError(LedgerError):
    """Mutation attempted on a shift that is not in a state that allows it."""


class SaveInProgressError(LedgerError):
    """A save for this shift is already running."""


class PersistenceError(LedgerError):
    """The remote store rejected or could not be reached."""
