"""Record service adapters for remote backends."""

from .http_records import HttpRecordService

__all__ = ["HttpRecordService"]
