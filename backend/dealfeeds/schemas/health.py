"""Health check schemas."""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Health check response schema."""

    status: str
    database: str
    categories: int = 0
    items: int = 0
    last_refreshed: Optional[datetime] = None
    refresh_in_progress: bool = False
    scheduler: Optional[Dict[str, dict]] = None
