"""Expense splitting, group balances and settlement suggestions."""
from .ledger import aggregate, net_positions
from .settlement import optimize
from .splits import compute

__all__ = ["aggregate", "compute", "net_positions", "optimize"]
