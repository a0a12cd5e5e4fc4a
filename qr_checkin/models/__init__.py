# models/__init__.py
from .base import BaseModel
from .stored_value import StoredValue

__all__ = [
    'BaseModel',
    'StoredValue'
]
