from .chain import GENESIS_HASH, compute_hash, hash_record
from .integrity import IntegrityLedger, SEAL_EVENT_TYPE
from .models import Actor, Resource, LedgerEvent, IntegrityReport, EventFilters, mask_ip

__all__ = [
    "GENESIS_HASH",
    "compute_hash",
    "hash_record",
    "IntegrityLedger",
    "SEAL_EVENT_TYPE",
    "Actor",
    "Resource",
    "LedgerEvent",
    "IntegrityReport",
    "EventFilters",
    "mask_ip",
]
