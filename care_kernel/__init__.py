"""
Care Kernel

Shared foundations for the care-home back office:
- Tenant-scoped persistence with audit metadata
- Structured JSON logging
- Typed exceptions carrying API error codes and HTTP statuses
- Deterministic clocks and workflow state machines
- Queued, batched audit trail
"""

__version__ = "0.1.0"
