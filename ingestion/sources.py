"""
Registry of configured feed sources
"""

from dataclasses import dataclass
from typing import Dict, Optional

from core.config import Settings, settings
from ingestion.base import PageFetcher
from ingestion.extractors.misp_extractor import MispExtractor
from ingestion.extractors.nvd_extractor import NvdExtractor
from ingestion.extractors.rss_extractor import RSSExtractor
from ingestion.transformers.normalizer import (
    MispNormalizer,
    NvdNormalizer,
    RecordNormalizer,
    RssNormalizer,
)
from models.base import FeedType


@dataclass
class FeedSource:
    """Everything the fetch cycle controller needs to know about one feed"""
    source_id: str
    feed_type: FeedType
    fetcher: PageFetcher
    normalizer: RecordNormalizer
    page_size: int
    lookback_days: int = 30
    max_window_days: Optional[int] = None


def build_sources(config: Optional[Settings] = None) -> Dict[str, FeedSource]:
    """
    Build the enabled sources keyed by ``source_id``.

    NVD is on unless ``NVD_ENABLED`` is false, MISP only when ``MISP_URL`` is
    set, and one RSS source is registered per ``RSS_FEEDS`` entry as
    ``rss-<name>``.
    """
    config = config or settings
    sources: Dict[str, FeedSource] = {}

    common = {
        "lookback_days": config.LOOKBACK_DAYS,
        "max_window_days": config.MAX_WINDOW_DAYS,
    }

    if config.NVD_ENABLED:
        sources["nvd"] = FeedSource(
            source_id="nvd",
            feed_type=FeedType.NVD,
            fetcher=NvdExtractor(
                source_name="nvd",
                api_url=config.NVD_API_URL,
                api_key=config.NVD_API_KEY,
                timeout=config.HTTP_TIMEOUT,
            ),
            normalizer=NvdNormalizer(source_name="nvd", locale=config.DESCRIPTION_LOCALE),
            page_size=config.NVD_PAGE_SIZE,
            **common
        )

    if config.MISP_URL:
        sources["misp"] = FeedSource(
            source_id="misp",
            feed_type=FeedType.MISP,
            fetcher=MispExtractor(
                base_url=config.MISP_URL,
                api_key=config.MISP_API_KEY,
                source_name="misp",
                verify_ssl=config.MISP_VERIFY_SSL,
                timeout=config.HTTP_TIMEOUT,
            ),
            normalizer=MispNormalizer(source_name="misp"),
            page_size=config.MISP_PAGE_SIZE,
            **common
        )

    for name, feed_url in config.RSS_FEEDS.items():
        source_id = f"rss-{name}"
        sources[source_id] = FeedSource(
            source_id=source_id,
            feed_type=FeedType.RSS,
            fetcher=RSSExtractor(source_name=name, feed_url=feed_url, timeout=config.HTTP_TIMEOUT),
            normalizer=RssNormalizer(source_name=name),
            page_size=config.RSS_PAGE_SIZE,
            **common
        )

    return sources
