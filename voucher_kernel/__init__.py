"""
Voucher Kernel

Shared infrastructure for the voucher purchase-order engine:
- SQLAlchemy base classes, engine and session management
- Money types with explicit decimal precision
- Injectable clock
- Locked-counter sequence allocation
- Structured JSON logging
- Typed exception hierarchy
"""

__version__ = "0.1.0"
