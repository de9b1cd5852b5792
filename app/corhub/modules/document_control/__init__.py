"""
Document Control module.

COR-aligned document registry:
- Every document has a company-unique control number (e.g. NCCI-POL-001)
- Versions move through a fixed lifecycle (draft -> review -> approved -> active ...)
- New versions supersede old ones; nothing is deleted
- Every status change is recorded to the append-only audit trail
"""
