from datetime import datetime, timezone
from sqlalchemy import JSON, Enum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# ENUMS
# ============================================================================

class FeedType(str, enum.Enum):
    """Upstream feed families"""
    NVD = "nvd"
    MISP = "misp"
    RSS = "rss"


class CycleState(str, enum.Enum):
    """Fetch cycle controller states"""
    INIT = "init"
    FETCHING_PAGE = "fetching_page"
    NORMALIZING = "normalizing"
    STORING = "storing"
    ADVANCING = "advancing"
    DONE = "done"
    BUDGET_STOPPED = "budget_stopped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CycleState.DONE, CycleState.BUDGET_STOPPED, CycleState.FAILED)


def enum_type(enum_cls) -> Enum:
    """Enum column stored by value, as a plain VARCHAR on every backend"""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )
