"""
Pipeline stages for subscription discovery.

Each stage is a stateless worker that claims jobs from its queue table and
either advances them to the next stage or finishes them with an outcome.
"""

__all__ = ["scan", "parse", "ingest", "notify"]
