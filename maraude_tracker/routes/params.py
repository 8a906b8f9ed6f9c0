"""Query parameters shared by list endpoints"""
from typing import Optional

from fastapi import Query

from maraude_tracker.repositories import page_window


class PageParams:
    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
    ):
        self.page = page
        self.limit = limit

    @property
    def window(self):
        return page_window(self.page, self.limit)


def active_filter(active: str = Query("true", pattern="^(true|false|all)$")) -> Optional[bool]:
    """'true' / 'false' filter on is_active, 'all' disables the filter"""
    if active == "all":
        return None
    return active == "true"


def is_active_filter(is_active: str = Query("true", alias="isActive", pattern="^(true|false|all)$")) -> Optional[bool]:
    return active_filter(is_active)
