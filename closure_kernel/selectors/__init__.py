"""Selectors for the closure kernel (read side)."""

from closure_kernel.selectors.closure_selector import ClosureFilters, ClosureSelector

__all__ = [
    "ClosureFilters",
    "ClosureSelector",
]
