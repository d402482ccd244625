"""
HTTP helpers and lazy page iterators shared by provider adapters.

Every iterator pulls one page at a time and stops on the provider's
last-page signal. A listing that keeps producing pages past ``max_pages``
raises ``PaginationLimitExceededError`` instead of looping forever.
"""
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from app.core.exceptions import AuthenticationFailedError, PaginationLimitExceededError
from app.integrations.adapter import SyncContext

Records = List[Dict[str, Any]]


async def send(
    ctx: SyncContext,
    url: str,
    *,
    method: str = "GET",
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    json: Any = None,
) -> httpx.Response:
    """
    Issue an authenticated request.

    Raises:
        AuthenticationFailedError: on HTTP 401
        httpx.HTTPStatusError: on any other error status
    """
    response = await ctx.client.request(
        method,
        url,
        params=params,
        headers=headers or ctx.auth_headers(),
        json=json,
    )
    if response.status_code == 401:
        raise AuthenticationFailedError(
            f"{ctx.provider.value} rejected the access token ({method} {response.request.url.path})",
            provider=ctx.provider.value,
        )
    response.raise_for_status()
    return response


async def fetch_json(ctx: SyncContext, url: str, **kwargs) -> Any:
    response = await send(ctx, url, **kwargs)
    if not response.content:
        return None
    return response.json()


def _check_limit(pages_fetched: int, max_pages: int, label: str) -> None:
    if pages_fetched >= max_pages:
        raise PaginationLimitExceededError(
            f"Listing {label} did not terminate after {max_pages} pages"
        )


async def iterate_cursor(
    fetch: Callable[[Optional[str]], Awaitable[Tuple[Records, Optional[str]]]],
    *,
    max_pages: int,
    label: str,
) -> AsyncIterator[Records]:
    """
    Follow an opaque continuation value until the provider stops returning one
    or returns an empty page.

    Covers cursors, page tokens and next-page URLs. ``fetch`` receives None
    for the first page.
    """
    cursor: Optional[str] = None
    pages = 0
    while True:
        _check_limit(pages, max_pages, label)
        records, cursor = await fetch(cursor)
        pages += 1
        if not records:
            return
        yield records
        if not cursor:
            return


async def iterate_offset(
    fetch: Callable[[int], Awaitable[Tuple[Records, Optional[int]]]],
    *,
    max_pages: int,
    label: str,
) -> AsyncIterator[Records]:
    """
    Walk an offset/total listing (``startAt``/``total`` style).

    The last page is reached when ``offset + len(page) >= total`` or a page
    comes back empty.
    """
    offset = 0
    pages = 0
    while True:
        _check_limit(pages, max_pages, label)
        records, total = await fetch(offset)
        pages += 1
        if not records:
            return
        yield records
        offset += len(records)
        if total is not None and offset >= total:
            return


async def iterate_page_numbers(
    fetch: Callable[[int], Awaitable[Tuple[Records, Optional[bool]]]],
    *,
    max_pages: int,
    label: str,
    start: int = 1,
    page_size: Optional[int] = None,
) -> AsyncIterator[Records]:
    """
    Walk a page-number listing.

    Stops when ``fetch`` reports the last page, a page is empty, or a page
    holds fewer than ``page_size`` records.
    """
    page = start
    pages = 0
    while True:
        _check_limit(pages, max_pages, label)
        records, is_last = await fetch(page)
        pages += 1
        if records:
            yield records
        if is_last or not records or (page_size and len(records) < page_size):
            return
        page += 1


def next_link(response: httpx.Response) -> Optional[str]:
    """URL of the ``rel="next"`` entry in an RFC 5988 Link header."""
    return response.links.get("next", {}).get("url")
