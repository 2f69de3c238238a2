"""
WeRead API client for WeRead Sync Service.

WeRead has no public API; these are the endpoints used by its web reader,
authenticated with the browser cookie.
"""

from typing import Optional, List, Dict, Any

import requests

from weread_sync.api.base import (
    BaseClient,
    APIError,
    RequestThrottle,
    RetryPolicy,
    SessionExpiredError,
)
from weread_sync.sync.models import Book, Note, Highlight
from weread_sync.utils.logging import get_logger

logger = get_logger(__name__)

WEREAD_API_URL = "https://i.weread.qq.com"

# errcodes returned when the cookie is no longer accepted
SESSION_EXPIRED_ERRCODES = (-2012, -2010)

# Whole-book reviews carry no chapter
BOOK_REVIEW_TYPE = 4
BOOK_REVIEW_CHAPTER = 1000000


def parse_cookie_string(cookie: str) -> Dict[str, str]:
    """Split a ``k=v; k2=v2`` cookie header into a dict."""
    cookies = {}
    for part in cookie.split(";"):
        key, sep, value = part.strip().partition("=")
        if sep and key:
            cookies[key] = value
    return cookies


def get_category(categories: Optional[List[Dict[str, Any]]]) -> str:
    """Join category titles with ``|``."""
    if not categories:
        return ""
    return "|".join(category.get("title", "") for category in categories)


def parse_book(item: Dict[str, Any]) -> Book:
    return Book(
        book_id=str(item.get("bookId", "")),
        title=item.get("title", ""),
        author=item.get("author", ""),
        cover_url=item.get("cover", ""),
        category=get_category(item.get("categories")),
    )


class WeReadClient(BaseClient):
    """
    Client for the WeRead web API.

    Every method is retried by the client's RetryPolicy and throttled by
    its RequestThrottle before each HTTP call.
    """

    def __init__(
        self,
        cookie: str,
        base_url: str = WEREAD_API_URL,
        timeout: int = 30,
        retry_policy: Optional[RetryPolicy] = None,
        throttle: Optional[RequestThrottle] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize WeRead client.

        Args:
            cookie: Cookie header copied from a logged-in WeRead web session
            base_url: API base URL
            timeout: HTTP timeout in seconds
            retry_policy: Retry policy for every call
            throttle: Delay applied before each HTTP call
            session: Optional requests session
        """
        super().__init__(
            base_url,
            timeout=timeout,
            retry_policy=retry_policy,
            throttle=throttle,
            session=session,
        )
        self.cookie = cookie
        self.session.headers.update({"Cookie": cookie})

    def _raise_for_error(self, status_code: int, data: Dict[str, Any]) -> None:
        errcode = data.get("errcode") or 0

        if errcode in SESSION_EXPIRED_ERRCODES:
            logger.error(
                "WeRead cookie expired, it needs to be set again",
                errcode=errcode,
            )
            raise SessionExpiredError(
                message=data.get("errmsg") or "WeRead session expired",
                status_code=status_code,
                response_data=data,
                errcode=errcode,
            )

        if status_code >= 400 or errcode:
            raise APIError(
                message=str(data.get("errmsg") or data.get("error") or data),
                status_code=status_code,
                response_data=data,
                errcode=errcode or None,
            )

    def get_user_info(self) -> Dict[str, Any]:
        """Get the profile of the logged-in user."""
        return self.get("/user/profile")

    def test_connection(self) -> bool:
        """
        Check that the cookie is accepted.

        Returns:
            True if the profile could be loaded, False otherwise
        """
        try:
            self.get_user_info()
            return True
        except APIError as e:
            logger.error("Failed to connect to WeRead", error=str(e))
            return False

    def get_bookshelf(self) -> List[Book]:
        """
        Get every book on the shelf, ordered by the shelf's sort field.
        """
        data = self.get(
            "/shelf/sync",
            params={"synckey": 0, "teenmode": 0, "album": 1, "onlyBookid": 0},
        )
        books = sorted(data.get("books", []), key=lambda item: item.get("sort", 0))
        return [parse_book(item) for item in books]

    def get_notebooks(self) -> List[Book]:
        """
        Get books that have at least one note or highlight.
        """
        data = self.get("/user/notebooks")
        entries = sorted(data.get("books", []), key=lambda item: item.get("sort", 0))
        books = [parse_book(entry.get("book", {})) for entry in entries]

        logger.info("Retrieved notebooks", count=len(books))
        return books

    def get_book_detail(self, book_id: str) -> Optional[Book]:
        """
        Get book details.

        Returns:
            Book, or None if it could not be loaded after retries
        """
        try:
            data = self.get("/book/info", params={"bookId": book_id})
        except SessionExpiredError:
            raise
        except APIError as e:
            logger.error("Failed to get book detail", book_id=book_id, error=str(e))
            return None

        return parse_book(data)

    def get_notes(self, book_id: str) -> List[Note]:
        """
        Get the user's reviews (notes with commentary) for a book.
        """
        data = self.get(
            "/review/list",
            params={"bookId": book_id, "listType": 11, "mine": 1, "syncKey": 0},
        )

        notes = []
        for item in data.get("reviews", []):
            review = item.get("review", {})
            chapter = review.get("chapterUid")
            if review.get("type") == BOOK_REVIEW_TYPE:
                chapter = BOOK_REVIEW_CHAPTER

            notes.append(Note(
                book_id=book_id,
                chapter_ref=int(chapter or 0),
                created_at=int(review.get("createTime", 0)),
                quoted_text=review.get("abstract") or "",
                commentary=review.get("content") or "",
                note_id=str(review.get("reviewId", "")),
            ))

        return notes

    def get_highlights(self, book_id: str) -> List[Highlight]:
        """
        Get the user's bookmarks (highlights without commentary) for a book.
        """
        data = self.get("/book/bookmarklist", params={"bookId": book_id})

        return [
            Highlight(
                book_id=book_id,
                chapter_ref=int(bookmark.get("chapterUid") or 0),
                created_at=int(bookmark.get("createTime", 0)),
                quoted_text=bookmark.get("markText") or "",
                highlight_id=str(bookmark.get("bookmarkId", "")),
            )
            for bookmark in data.get("updated") or []
        ]
