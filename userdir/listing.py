"""Search, filter and pagination over the in-memory account list.

Every function here is pure except load_listing(), which re-fetches the
whole table. The state value is passed in and returned, never kept at
module level. Filtering and paging happen after a full-table fetch, which
is fine for a small directory and is the scaling limit of this design.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import List, Sequence

from userdir.directory import DirectoryClient
from userdir.models import Account


PAGE_SIZE = 10
MAX_VISIBLE_PAGES = 5


def apply_filter(accounts: Sequence[Account], query: str) -> Sequence[Account]:
    if not query:
        return accounts
    needle = query.lower()
    return [
        a for a in accounts
        if needle in (a.account or "").lower() or needle in (a.display_name or "").lower()
    ]


def total_pages(count: int, page_size: int = PAGE_SIZE) -> int:
    return max(1, math.ceil(count / page_size))


def compute_page(filtered: Sequence[Account], page: int, page_size: int = PAGE_SIZE) -> List[Account]:
    start = max(0, (page - 1) * page_size)
    return list(filtered[start:start + page_size])


@dataclass(frozen=True)
class PageWindow:
    pages: List[int]
    show_first: bool
    leading_ellipsis: bool
    show_last: bool
    trailing_ellipsis: bool


def compute_page_window(current_page: int, total: int, max_visible: int = MAX_VISIBLE_PAGES) -> PageWindow:
    """Up to max_visible page numbers centred on current_page.

    When the centred window would run past the last page it is shifted back
    so it still shows max_visible pages.
    """
    start = max(1, current_page - max_visible // 2)
    end = min(total, start + max_visible - 1)
    start = max(1, end - max_visible + 1)
    return PageWindow(
        pages=list(range(start, end + 1)),
        show_first=start > 1,
        leading_ellipsis=start > 2,
        show_last=end < total,
        trailing_ellipsis=end < total - 1,
    )


@dataclass(frozen=True)
class ListingState:
    all_accounts: Sequence[Account] = field(default_factory=list)
    query: str = ""
    filtered: Sequence[Account] = field(default_factory=list)
    page: int = 1
    page_size: int = PAGE_SIZE

    @property
    def total_pages(self) -> int:
        return total_pages(len(self.filtered), self.page_size)

    @property
    def page_slice(self) -> List[Account]:
        return compute_page(self.filtered, self.page, self.page_size)

    @property
    def window(self) -> PageWindow:
        return compute_page_window(self.page, self.total_pages)

    @property
    def is_empty(self) -> bool:
        return not self.filtered


def filter_listing(state: ListingState, query: str) -> ListingState:
    query = (query or "").strip()
    return replace(state, query=query, filtered=apply_filter(state.all_accounts, query), page=1)


def load_listing(directory: DirectoryClient, query: str = "", page_size: int = PAGE_SIZE) -> ListingState:
    """Fetch the full table and apply query. Search and clear both come through here."""
    accounts = directory.list_all()
    return filter_listing(ListingState(all_accounts=accounts, page_size=page_size), query)


def clear_search(directory: DirectoryClient, page_size: int = PAGE_SIZE) -> ListingState:
    return load_listing(directory, "", page_size)


def go_to_page(state: ListingState, requested: int) -> ListingState:
    if requested < 1 or requested > state.total_pages:
        return state
    return replace(state, page=requested)
