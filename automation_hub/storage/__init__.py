"""Storage package"""
from .base import RecordStore
from .memory import InMemoryRecordStore
from .json_store import JsonFileRecordStore

__all__ = ["RecordStore", "InMemoryRecordStore", "JsonFileRecordStore"]
