"""Free-text search and pagination over the working set."""

import math
from typing import Any, Mapping, Sequence

from tablemanager.models.results import Page
from tablemanager.models.table import Record


class SearchPaginator:
    """Filters records by a search term and slices them into pages.

    Neither operation clamps the page number: when the filtered set shrinks
    the caller decides whether to move back into range with
    :func:`clamp_page`.
    """

    DEFAULT_PAGE_SIZE = 10

    def __init__(self, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._page_size = page_size

    @property
    def page_size(self) -> int:
        return self._page_size

    def filter(self, records: Sequence[Record], term: str) -> list[Record]:
        """Keep records with any field value containing ``term``.

        Matching is case-insensitive on the stringified value. An empty term
        matches every record.
        """
        if not term:
            return list(records)
        needle = term.casefold()
        return [record for record in records if _matches(record, needle)]

    def paginate(self, filtered: Sequence[Record], page: int) -> Page:
        """Return the 1-based ``page`` of ``filtered``.

        Pages outside ``1..total_pages`` come back empty.
        """
        start = (page - 1) * self._page_size
        end = page * self._page_size
        records = list(filtered[start:end]) if page >= 1 else []
        return Page(
            records=records,
            page=page,
            page_size=self._page_size,
            total_records=len(filtered),
            total_pages=self.total_pages(len(filtered)),
        )

    def search(self, records: Sequence[Record], term: str, page: int) -> Page:
        return self.paginate(self.filter(records, term), page)

    def total_pages(self, record_count: int) -> int:
        return math.ceil(record_count / self._page_size)


def clamp_page(page: int, total_pages: int) -> int:
    """Move ``page`` into ``1..total_pages``; an empty result set clamps to 1."""
    return max(1, min(page, max(total_pages, 1)))


def _matches(record: Mapping[str, Any], needle: str) -> bool:
    return any(value is not None and needle in _stringify(value).casefold() for value in record.values())


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
