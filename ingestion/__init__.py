"""
Fetch pipeline components for resumable threat-intel ingestion.

Modules:
    base: Page fetcher contract and the result types passed between stages
    checkpoint: Durable per-source progress and the single-flight lease
    budget: Per-invocation request and time limits
    runner: Fetch cycle controller (the checkpointed pagination state machine)
    sources: Registry of configured feeds
    scheduler: APScheduler integration for periodic cycles

Subpackages:
    extractors: Page fetchers (NVD, MISP, RSS)
    transformers: Record normalizers
    loaders: Relational upsert sink and MongoDB mirror

Architecture:
    Each invocation walks one source page by page:

    1. Fetch - one upstream round trip per page, failures returned as values
    2. Normalize - raw items become canonical records or counted rejects
    3. Store - per-record atomic upserts keyed by natural id
    4. Advance - the checkpoint is persisted before the next page is fetched

    The time-window watermark moves only once a window is fully consumed, so
    a failed or interrupted cycle resumes where it stopped.

Usage:
    from ingestion.sources import build_sources
    from ingestion.runner import FetchCycleController

Example:
    sources = build_sources()
    async with async_session_maker() as session:
        result = await FetchCycleController(session, sources["nvd"]).run()

    print(result.to_summary().model_dump(by_alias=True))
"""

__all__ = [
    "PageFetcher",
    "CheckpointStore",
    "CycleBudget",
    "FetchCycleController",
    "FeedSource",
    "build_sources",
    "IngestionScheduler",
]
