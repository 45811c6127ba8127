"""
Models package - canonical in-memory records
"""
from models.transaction import RentalRecord, SaleRecord, period_ordinal

__all__ = [
    'SaleRecord',
    'RentalRecord',
    'period_ordinal',
]
