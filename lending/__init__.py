"""
Library Lending Core
====================

Allocation of physical library book copies to members, loan lifecycle
tracking, per-title reservation queues and late-return fines.
Built with Pydantic V2, SQLAlchemy and FastAPI, following Domain-Driven Design patterns.

Key Features:
- Copy state machine guarded by optimistic concurrency (status + version)
- Borrow / return / renew with eligibility checks
- FIFO reservation queues with pickup windows
- Capped per-day fines computed at return time
- Domain events emitted after commit
- Thin RESTful command surface with FastAPI
"""

__version__ = "1.0.0"
__author__ = "Library Platform Team"
