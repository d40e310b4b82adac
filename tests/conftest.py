from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import pytest

from fetch_themes import ThemeClient, ThemeRecord, extract_theme_id, format_display_name, is_official_theme


class FakeResponse:
    def __init__(self, status: int = 200, body: Any = None, text: Optional[str] = None, headers=None):
        self.status = status
        self._body = body
        self._text = text
        self.headers = headers or {}

    async def json(self, content_type=None):
        if self._body is None and self._text is not None:
            return json.loads(self._text)
        return self._body

    async def text(self):
        if self._text is not None:
            return self._text
        return json.dumps(self._body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


@dataclass
class Call:
    url: str
    params: Optional[Dict]
    headers: Optional[Dict]


class FakeSession:
    """
    Stands in for aiohttp.ClientSession. Routes map a URL to a response, a
    list of responses served in order (the last one repeats), or a callable
    taking the request params. Exceptions are raised instead of returned.
    Unrouted URLs answer 404.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[Call] = []

    def get(self, url, headers=None, params=None):
        self.calls.append(Call(url, params, headers))
        handler = self.routes.get(url)
        if handler is None:
            return FakeResponse(404, {"message": "Not Found"})
        if isinstance(handler, list):
            result = handler.pop(0) if len(handler) > 1 else handler[0]
        elif callable(handler):
            result = handler(params)
        else:
            result = handler
        if isinstance(result, BaseException):
            raise result
        return result

    def urls(self, prefix: str = "") -> List[str]:
        return [call.url for call in self.calls if call.url.startswith(prefix)]


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def client(session: FakeSession, sleeps: List[float]) -> ThemeClient:
    theme_client = ThemeClient(session=session, token=None)

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    theme_client.sleep = fake_sleep
    return theme_client


@pytest.fixture
def run() -> Callable:
    return asyncio.run


def make_theme(package_name: str, downloads: Optional[int] = None, **fields) -> ThemeRecord:
    theme_id = extract_theme_id(package_name)
    return ThemeRecord(
        id=theme_id,
        package_name=package_name,
        name=fields.pop("name", format_display_name(theme_id)),
        is_official=is_official_theme(package_name),
        fetched_at=fields.pop("fetched_at", "2024-01-01T00:00:00.000Z"),
        downloads=downloads,
        **fields,
    )


def npm_package(name: str, **overrides) -> Dict[str, Any]:
    pkg = {
        "name": name,
        "version": "1.0.0",
        "description": f"{name} description",
        "keywords": ["slidev-theme", "slidev"],
        "date": "2024-03-01T10:00:00.000Z",
        "links": {"npm": f"https://www.npmjs.com/package/{name}"},
        "publisher": {"username": "publisher-user"},
    }
    pkg.update(overrides)
    return pkg
