"""
Repository Pattern for store operations

- PartnerRepository: partner records, orders, rank/metrics/page caches
"""
from .base import BaseRepository
from .partner_repo import PartnerRepository

__all__ = [
    "BaseRepository",
    "PartnerRepository",
]
