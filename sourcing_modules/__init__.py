"""
Sourcing Modules.

Orchestration over the sourcing kernel and engines.  Each module contains:
- Domain models (frozen DTOs and inputs)
- ORM persistence models
- Workflows (state machines)
- A service exposing the module's operations

Modules:
- Requisitions: demand lines, pending/purchased counters, reconciliation ledger
- Quotations: supplier quotation requests, received offers, award propagation
- Awards: offer selection and award commit into purchase orders
- Purchase orders: lifecycle, edits, supplier solutions, reconciliation
- Receiving: receipt events, stock bookings, derived receiving status
"""
