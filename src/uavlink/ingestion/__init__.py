"""Ingestion layer.

Turns raw transport payloads into validated fragments and routes them
through deduplication and the guarded store update.
"""

from uavlink.ingestion.dedup import Deduplicator
from uavlink.ingestion.pipeline import IngestionPipeline, IngestResult, resolve_device_id
from uavlink.ingestion.validate import ValidationProfile, validate_fragment

__all__ = [
    "Deduplicator",
    "IngestResult",
    "IngestionPipeline",
    "ValidationProfile",
    "resolve_device_id",
    "validate_fragment",
]
