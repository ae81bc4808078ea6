"""
Serialization of engine records
"""

from .records import decimal_text, record_from_dict, record_to_dict

__all__ = [
    "decimal_text",
    "record_from_dict",
    "record_to_dict",
]
