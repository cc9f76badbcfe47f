"""Category Pydantic schemas for API responses."""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel


class CategoryResponse(BaseModel):
    """Category response schema."""

    name: str
    slug: str
    item_count: int = 0
    last_refreshed: Optional[datetime] = None
    feeds: Dict[str, str] = {}  # format -> feed URL
