"""
Sourcing Kernel

Infrastructure shared by the requisition sourcing modules:
- Optimistic, per-aggregate transactions with retry-on-conflict
- Typed, code-bearing exceptions
- Structured JSON logging
- Hash-chained audit trail
- Injectable clock and collaborator protocols
"""

__version__ = "0.1.0"
