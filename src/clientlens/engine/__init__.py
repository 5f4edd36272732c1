"""Processing engines.

This package provides the core processing engines:
- Ingestion of communications from a source into the store
- Insight pipeline (attribution + extraction per thread)
- Idempotent insight persistence
- Feedback submission
"""

from clientlens.engine.feedback import VALID_FEEDBACK, submit_feedback
from clientlens.engine.ingest import (
    CommunicationIngestor,
    CommunicationSource,
    InboundCommunication,
    IngestResult,
    JsonFileSource,
    parse_address,
    parse_timestamp,
)
from clientlens.engine.persistence import InsightWriter, PersistOutcome
from clientlens.engine.pipeline import InsightPipeline, PipelineRunResult, group_by_thread

__all__ = [
    # Feedback
    "VALID_FEEDBACK",
    "submit_feedback",
    # Ingestion
    "CommunicationIngestor",
    "CommunicationSource",
    "InboundCommunication",
    "IngestResult",
    "JsonFileSource",
    "parse_address",
    "parse_timestamp",
    # Persistence
    "InsightWriter",
    "PersistOutcome",
    # Pipeline
    "InsightPipeline",
    "PipelineRunResult",
    "group_by_thread",
]
