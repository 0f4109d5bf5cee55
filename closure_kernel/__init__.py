"""
Closure Kernel

Daily financial closure for a school's treasury:
- Collision-free receipt references
- Day aggregation of revenues and expenses
- Cash variance reconciliation with recorded justifications
- Immutable validated closures
- Working-capital analysis
"""

__version__ = "0.1.0"
