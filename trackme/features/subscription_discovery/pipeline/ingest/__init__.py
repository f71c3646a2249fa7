from trackme.features.subscription_discovery.pipeline.ingest.service import (
    IngestWorker,
    next_payment_date,
)

__all__ = ["IngestWorker", "next_payment_date"]
