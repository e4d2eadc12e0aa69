"""Batch publisher engine: paced, parallel, all-settled relay writes."""

from relaysync.engines.publisher.models import PublishSummary
from relaysync.engines.publisher.publisher import BatchPublisher

__all__ = ["BatchPublisher", "PublishSummary"]
