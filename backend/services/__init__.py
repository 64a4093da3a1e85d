"""Services package."""
from services.domain_store import DomainStore
from services.event_queue import EventBatchQueue
from services.sink import HttpAnalyticsSink

__all__ = ["DomainStore", "EventBatchQueue", "HttpAnalyticsSink"]
