"""Database models package."""
from review_engine.db.models.review import ItemTombstone, ReviewLog, ReviewStateRecord

__all__ = [
    "ItemTombstone",
    "ReviewLog",
    "ReviewStateRecord",
]
