"""
Contract Kernel

Contract lifecycle and signature workflow engine for a multi-tenant
coworking platform:
- Contract state machine with optimistic concurrency
- Ordered multi-party digital signature workflows
- Rule-driven renewal proposals and auto-renewal
- Hash-chained, append-only audit log
"""

__version__ = "0.1.0"
