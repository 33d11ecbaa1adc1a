"""
COOK ledger issuance and hash-chained attestations.
"""

from .attestations import AttestationService, canonical_payload, compute_merkle_root
from .services import LedgerService

__all__ = [
    "AttestationService",
    "LedgerService",
    "canonical_payload",
    "compute_merkle_root",
]
