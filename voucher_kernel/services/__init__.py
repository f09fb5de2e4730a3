"""Kernel services shared by the purchasing packages."""

from voucher_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "SequenceCounter",
    "SequenceService",
]
