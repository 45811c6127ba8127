"""
Utility modules for the backend.
"""
from .normalize import ValidationError
from .numeric import round_half_up, round_int

__all__ = [
    'ValidationError',
    'round_half_up',
    'round_int',
]
