"""
Pytest configuration and fixtures
"""

import os

# Settings are read at import time; pin the test environment first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("LOG_QUEUE_URL", None)
os.environ.pop("MONGODB_URI", None)

import pytest
import pytest_asyncio
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from core.exceptions import UpstreamError
from ingestion.base import PageFetcher, PageResult, TimeWindow
from ingestion.sources import FeedSource
from ingestion.transformers.normalizer import NvdNormalizer
from models.base import Base, FeedType
# Register every table on Base.metadata
from models.checkpoint import FetchCheckpoint  # noqa: F401
from models.fetch_run import FetchRun  # noqa: F401
from models.intel_record import IntelRecord  # noqa: F401

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0)


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create test database engine (one SQLite file per test)"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,  # Disable connection pooling for tests
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


def make_nvd_item(
    cve_id: Optional[str] = "CVE-2024-0001",
    score: Optional[float] = 7.5,
    severity: str = "HIGH",
    description: str = "Example vulnerability",
    last_modified: str = "2024-05-20T08:15:00.000",
) -> Dict[str, Any]:
    """One element of an NVD ``vulnerabilities`` array"""
    cve: Dict[str, Any] = {
        "sourceIdentifier": "cve@mitre.org",
        "published": "2024-05-01T10:00:00.000",
        "lastModified": last_modified,
        "vulnStatus": "Analyzed",
        "descriptions": [
            {"lang": "es", "value": "Vulnerabilidad de ejemplo"},
            {"lang": "en", "value": description},
        ],
        "metrics": {},
        "weaknesses": [
            {"source": "nvd@nist.gov", "type": "Primary", "description": [{"lang": "en", "value": "CWE-79"}]}
        ],
        "references": [
            {"url": "https://example.com/advisory"},
            {"url": ""},
        ],
    }
    if cve_id is not None:
        cve["id"] = cve_id
    if score is not None:
        cve["metrics"]["cvssMetricV31"] = [{
            "source": "nvd@nist.gov",
            "type": "Primary",
            "cvssData": {
                "version": "3.1",
                "baseScore": score,
                "baseSeverity": severity,
                "vectorString": "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:N/A:N",
            },
        }]
    return {"cve": cve}


@pytest.fixture
def nvd_item():
    """Factory for raw NVD items"""
    return make_nvd_item


class ScriptedFetcher(PageFetcher):
    """
    In-memory upstream serving ``items`` in pages.

    ``fail_at_page`` (1-based page number) raises ``fail_with`` instead of
    serving that page; ``fail_times`` limits how often it does so.
    """

    feed_type = FeedType.NVD

    def __init__(
        self,
        items: List[Dict[str, Any]],
        report_total: bool = True,
        fail_at_page: Optional[int] = None,
        fail_with: Optional[BaseException] = None,
        fail_times: Optional[int] = None,
    ):
        super().__init__(source_name="scripted")
        self.items = items
        self.report_total = report_total
        self.fail_at_page = fail_at_page
        self.fail_with = fail_with
        self.fail_times = fail_times
        self.calls: List[Dict[str, Any]] = []

    async def fetch_page(self, offset: int, page_size: int, window: TimeWindow) -> PageResult:
        self.calls.append({"offset": offset, "page_size": page_size, "window": window})
        page_number = offset // page_size + 1

        if self.fail_at_page == page_number and self.fail_times != 0:
            if self.fail_times is not None:
                self.fail_times -= 1
            raise self.fail_with or UpstreamError(
                "scripted returned HTTP 500", status_code=500, response_body="boom"
            )

        return PageResult(
            records=self.items[offset:offset + page_size],
            total_count=len(self.items) if self.report_total else None,
            page_size=page_size,
            offset=offset,
        )


@pytest.fixture
def make_source():
    """Wrap a fetcher as a FeedSource with an NVD normalizer"""

    def _make(fetcher: PageFetcher, page_size: int = 2, source_id: str = "nvd") -> FeedSource:
        return FeedSource(
            source_id=source_id,
            feed_type=FeedType.NVD,
            fetcher=fetcher,
            normalizer=NvdNormalizer(source_name=source_id),
            page_size=page_size,
            lookback_days=30,
            max_window_days=120,
        )

    return _make


@pytest.fixture
def scripted_fetcher():
    """The ScriptedFetcher class, for tests that build their own upstream"""
    return ScriptedFetcher


@pytest.fixture
def fixed_now():
    return FIXED_NOW
