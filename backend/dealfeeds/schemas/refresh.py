"""Refresh result schemas."""

from typing import Optional

from pydantic import BaseModel

CATEGORY_NOT_FOUND = "category_not_found"
REFRESH_IN_PROGRESS = "refresh_in_progress"


class RefreshResult(BaseModel):
    """Outcome of one refresh_all / refresh_category invocation.

    saved_count only counts upserts that completed, so a failed batch
    still reports its partial progress.
    """

    saved_count: int = 0
    skipped_count: int = 0
    category: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def not_found(self) -> bool:
        return self.error == CATEGORY_NOT_FOUND
