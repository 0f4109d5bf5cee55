"""
closure_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines
    (closure_engines/) with database sessions and the collaborator
    gateways.  The only layer that owns transaction boundaries.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        closure_services/ -> closure_engines/  (allowed)
        closure_services/ -> closure_kernel/   (allowed)
        closure_services/ -> closure_config/   (allowed)
        closure_engines/  -> closure_services/ (FORBIDDEN)
        closure_kernel/   -> closure_services/ (FORBIDDEN)
"""

from closure_services.daily_closure import (
    DailyClosureFacade,
    aggregation_rules,
    to_payload,
)

__all__ = [
    "DailyClosureFacade",
    "aggregation_rules",
    "to_payload",
]
