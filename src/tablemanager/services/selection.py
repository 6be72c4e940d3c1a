"""Record selection for bulk actions."""

from typing import Iterable, Iterator

import structlog


class SelectionSet:
    """Keys of the records chosen for a bulk action, scoped to one table.

    The selection is not pruned when the search term or page changes: a key
    selected on one filtered page stays selected after it scrolls out of
    view, until it is toggled off, its record is deleted, or the selection
    is cleared.
    """

    def __init__(
        self,
        table_name: str | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._table_name = table_name
        # dict keeps insertion order for stable iteration
        self._keys: dict[str, None] = {}
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def table_name(self) -> str | None:
        return self._table_name

    @property
    def keys(self) -> frozenset[str]:
        return frozenset(self._keys)

    def __contains__(self, record_key: object) -> bool:
        return record_key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._keys))

    def __bool__(self) -> bool:
        return bool(self._keys)

    def toggle(self, record_key: str) -> bool:
        """Select ``record_key`` if absent, deselect it if present.

        Returns:
            True if the key is selected afterwards.
        """
        if record_key in self._keys:
            del self._keys[record_key]
            return False
        self._keys[record_key] = None
        return True

    def toggle_all_on_page(self, page_keys: Iterable[str]) -> None:
        """Page-scoped select all.

        Clears the selection when it is exactly the page's key set; otherwise
        adds the page's unselected keys, so selecting page 2 after page 1
        accumulates.
        """
        page = list(dict.fromkeys(page_keys))
        if set(page) == set(self._keys):
            self.clear()
            return
        for key in page:
            self._keys.setdefault(key, None)
        self._logger.debug("page_selected", table=self._table_name, selected=len(self._keys))

    def clear(self) -> None:
        self._keys.clear()

    def reset(self, table_name: str | None) -> None:
        """Clear the selection and scope it to another table."""
        self._keys.clear()
        self._table_name = table_name

    def discard_missing(self, present_keys: Iterable[str]) -> int:
        """Drop keys whose records are no longer present.

        Returns:
            Number of keys removed.
        """
        present = set(present_keys)
        missing = [key for key in self._keys if key not in present]
        for key in missing:
            del self._keys[key]
        return len(missing)
