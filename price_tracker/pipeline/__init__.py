from price_tracker.pipeline.ingest import IngestSummary, PriceObservation, ingest_batch
from price_tracker.pipeline.runner import ingest_in_chunks
from price_tracker.pipeline.stale import recalculate_all_stale, recalculate_stale

__all__ = [
    "IngestSummary",
    "PriceObservation",
    "ingest_batch",
    "ingest_in_chunks",
    "recalculate_all_stale",
    "recalculate_stale",
]
