"""
Cost-Control Kernel

Shared infrastructure for the budget versioning and progress
certification engine:
- Typed, coded exceptions
- Structured JSON logging
- Fixed-point decimal persistence (no floats)
- ORM-level immutability of locked budgets and issued certifications
- Gap-free per-project numbering and a transactional outbox
"""

__version__ = "0.1.0"
