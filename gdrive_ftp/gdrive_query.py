"""
Paginated Drive file queries.

Drive returns ``files().list`` results in pages of at most 1000 items with a
``nextPageToken`` pointing at the next page. ``list_files`` follows the tokens
and returns all items in the order Drive produced them.
"""

import logging
import threading
from concurrent.futures import CancelledError
from typing import Callable

from .entries import LIST_FIELDS

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000


def escape_query_value(value: str) -> str:
    """Escape a string literal for use inside a Drive query."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def children_query(parent_id: str) -> str:
    return f"'{escape_query_value(parent_id)}' in parents"


def child_by_name_query(parent_id: str, name: str) -> str:
    return f"{children_query(parent_id)} and name = '{escape_query_value(name)}'"


def raise_if_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise CancelledError()


def list_files(
    files_resource,
    query: str,
    execute: Callable,
    page_size: int = PAGE_SIZE,
    cancel: threading.Event | None = None,
    shared_drive_id: str | None = None,
) -> list[dict]:
    """
    Run a Drive query and collect every page.

    Args:
        files_resource: The ``service.files()`` resource.
        query: Drive query expression (``q`` parameter).
        execute: Callable that executes a prepared request and returns the
            response dict. Error translation and locking happen there.
        page_size: Maximum items per page.
        cancel: Checked before each page; a set event aborts the listing.
        shared_drive_id: Restrict the query to this shared drive.

    Returns:
        All matching file resources, in page order.
    """
    kwargs = {
        "q": query,
        "fields": LIST_FIELDS,
        "pageSize": page_size,
    }
    if shared_drive_id:
        kwargs["corpora"] = "drive"
        kwargs["driveId"] = shared_drive_id
        kwargs["includeItemsFromAllDrives"] = True
        kwargs["supportsAllDrives"] = True

    results: list[dict] = []
    page_token = None
    pages = 0

    while True:
        raise_if_cancelled(cancel)
        if page_token:
            kwargs["pageToken"] = page_token

        response = execute(files_resource.list(**kwargs))
        pages += 1
        results.extend(response.get("files", []))

        page_token = response.get("nextPageToken")
        if not page_token:
            break

    logger.debug("Query %r returned %d items in %d page(s)", query, len(results), pages)
    return results
