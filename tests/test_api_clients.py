"""Tests for the WeRead and Writeathon clients using fake HTTP sessions."""
from __future__ import annotations

from typing import List

import pytest
import requests

from conftest import FakeResponse, FakeSession

from weread_sync.api.base import APIError, RequestThrottle, RetryPolicy, SessionExpiredError
from weread_sync.api.weread import WeReadClient, parse_cookie_string
from weread_sync.api.writeathon import WriteathonClient
from weread_sync.config import DestinationCredentials

CREDENTIALS = DestinationCredentials(api_token="token", user_id="42")


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_weread(responses, sleeper=None) -> WeReadClient:
    sleeper = sleeper or SleepRecorder()
    return WeReadClient(
        "wr_skey=abc; wr_vid=1",
        retry_policy=RetryPolicy(sleep=sleeper),
        throttle=RequestThrottle(0, max_jitter_ms=0, sleep=sleeper),
        session=FakeSession(responses),
    )


def test_retry_policy_retries_with_fixed_backoff():
    sleeper = SleepRecorder()
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise APIError("boom")
        return "ok"

    assert RetryPolicy(sleep=sleeper).call(flaky) == "ok"
    assert len(calls) == 3
    assert sleeper.calls == [5.0, 5.0]


def test_retry_policy_gives_up_after_three_attempts():
    sleeper = SleepRecorder()
    calls = []

    def failing():
        calls.append(1)
        raise APIError("boom")

    with pytest.raises(APIError):
        RetryPolicy(sleep=sleeper).call(failing)

    assert len(calls) == 3
    assert sleeper.calls == [5.0, 5.0]


def test_throttle_adds_jitter_to_delay():
    sleeper = SleepRecorder()
    throttle = RequestThrottle(200, sleep=sleeper)

    throttle.wait()

    assert 0.2 <= sleeper.calls[0] <= 0.3


def test_parse_cookie_string():
    assert parse_cookie_string("wr_skey=abc; wr_vid=1;") == {"wr_skey": "abc", "wr_vid": "1"}


def test_bookshelf_is_sorted_by_sort_field():
    client = make_weread([FakeResponse({"books": [
        {"bookId": "2", "title": "Second", "author": "B", "cover": "c2", "sort": 20},
        {"bookId": "1", "title": "First", "author": "A", "cover": "c1", "sort": 10,
         "categories": [{"title": "Fiction"}, {"title": "Classic"}]},
    ]})])

    books = client.get_bookshelf()

    assert [book.book_id for book in books] == ["1", "2"]
    assert books[0].category == "Fiction|Classic"
    assert client.session.headers["Cookie"] == "wr_skey=abc; wr_vid=1"


def test_get_notes_parses_reviews():
    client = make_weread([FakeResponse({"reviews": [
        {"review": {"reviewId": "r1", "chapterUid": 3, "createTime": 1700000000,
                    "abstract": "quoted", "content": "thought"}},
        {"review": {"reviewId": "r2", "type": 4, "createTime": 1700000001, "content": "book review"}},
    ]})])

    notes = client.get_notes("100")

    assert [(n.note_id, n.chapter_ref) for n in notes] == [("r1", 3), ("r2", 1000000)]
    assert notes[0].quoted_text == "quoted"
    assert notes[1].quoted_text == ""
    method, url, kwargs = client.session.calls[0]
    assert url == "https://i.weread.qq.com/review/list"
    assert kwargs["params"]["bookId"] == "100"


def test_get_highlights_parses_bookmarks():
    client = make_weread([FakeResponse({"updated": [
        {"bookmarkId": "b1", "chapterUid": 2, "createTime": 1700000000, "markText": "marked"},
    ]})])

    highlights = client.get_highlights("100")

    assert highlights[0].highlight_id == "b1"
    assert highlights[0].quoted_text == "marked"


def test_network_errors_are_retried_then_succeed():
    sleeper = SleepRecorder()
    client = make_weread(
        [requests.exceptions.ConnectionError("down"), FakeResponse({"books": []})],
        sleeper=sleeper,
    )

    assert client.get_notebooks() == []
    assert 5.0 in sleeper.calls
    assert len(client.session.calls) == 2


def test_session_expired_errcode_raises_after_retries():
    client = make_weread([FakeResponse({"errcode": -2012, "errmsg": "login timeout"})] * 3)

    with pytest.raises(SessionExpiredError) as excinfo:
        client.get_notebooks()

    assert excinfo.value.errcode == -2012
    assert len(client.session.calls) == 3


def test_book_detail_returns_none_after_failures():
    client = make_weread([FakeResponse({"errmsg": "boom"}, status_code=500)] * 3)

    assert client.get_book_detail("100") is None


def test_throttle_runs_before_every_request():
    sleeper = SleepRecorder()
    client = WeReadClient(
        "c",
        retry_policy=RetryPolicy(sleep=sleeper),
        throttle=RequestThrottle(100, max_jitter_ms=0, sleep=sleeper),
        session=FakeSession([FakeResponse({"books": []}), FakeResponse({"updated": []})]),
    )

    client.get_notebooks()
    client.get_highlights("1")

    assert sleeper.calls == [0.1, 0.1]


def make_writeathon(responses, sleeper) -> WriteathonClient:
    return WriteathonClient(
        retry_policy=RetryPolicy(sleep=sleeper),
        sleep=sleeper,
        session=FakeSession(responses),
    )


def test_validate_credentials_checks_user_id():
    sleeper = SleepRecorder()
    client = make_writeathon([
        FakeResponse({"success": True, "data": {"id": "42", "username": "reader"}}),
        FakeResponse({"success": True, "data": {"id": "7"}}),
    ], sleeper)

    assert client.validate_credentials(CREDENTIALS) is True
    assert client.validate_credentials(CREDENTIALS) is False
    assert client.session.calls[0][2]["headers"] == {"x-writeathon-token": "token"}


def test_create_card_posts_title_and_content():
    sleeper = SleepRecorder()
    client = make_writeathon([FakeResponse({"success": True, "data": {}})], sleeper)

    assert client.create_card(CREDENTIALS, "Title", "Body") is True

    method, url, kwargs = client.session.calls[0]
    assert method == "POST"
    assert url == "https://api.writeathon.cn/v1/users/42/cards"
    assert kwargs["json"] == {"title": "Title", "content": "Body"}
    assert sleeper.calls == [0.14]


def test_create_card_returns_false_after_three_failures():
    sleeper = SleepRecorder()
    client = make_writeathon([FakeResponse({"message": "busy"}, status_code=500)] * 3, sleeper)

    assert client.create_card(CREDENTIALS, "Title", "Body") is False
    assert len(client.session.calls) == 3
    assert sleeper.calls == [0.14, 5.0, 0.14, 5.0, 0.14]


def test_create_card_recovers_after_two_failures():
    sleeper = SleepRecorder()
    client = make_writeathon([
        FakeResponse({"message": "busy"}, status_code=500),
        FakeResponse({"success": False, "message": "limited"}),
        FakeResponse({"success": True}),
    ], sleeper)

    assert client.create_card(CREDENTIALS, "Title", "Body") is True
    assert len(client.session.calls) == 3
