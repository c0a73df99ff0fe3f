"""
Pydantic schemas for serialized engine records.
"""
from .cat import (
    ItemTranslation,
    ItemRecord,
    SessionRecord,
    ResultRecord,
    item_to_record,
    session_to_record,
    session_from_record,
    result_to_record,
)

__all__ = [
    "ItemTranslation",
    "ItemRecord",
    "SessionRecord",
    "ResultRecord",
    "item_to_record",
    "session_to_record",
    "session_from_record",
    "result_to_record",
]
