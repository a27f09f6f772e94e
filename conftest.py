"""
Shared test helpers.

``FakeSession`` stands in for ``aiohttp.ClientSession`` so adapters run
against canned responses without touching the network.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pytest
from tenacity import wait_none

FIXTURES_DIR = Path(__file__).parent / "tests" / "fixtures"


class FakeResponse:
    def __init__(self, status: int = 200, body: Union[str, Any] = "", content_type: str = "application/json"):
        self.status = status
        self.headers = {"Content-Type": content_type}
        self._body = body if isinstance(body, str) else json.dumps(body)

    async def text(self) -> str:
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """
    Routes GETs to queued responses by URL prefix.

    A queued item may be a FakeResponse or an exception instance, which is
    raised instead of returning a response.
    """

    def __init__(self, routes: Optional[Dict[str, List[Any]]] = None):
        self.routes = {prefix: list(items) for prefix, items in (routes or {}).items()}
        self.calls: List[str] = []

    def get(self, url: str, **kwargs):
        self.calls.append(url)
        for prefix, queue in self.routes.items():
            if url.startswith(prefix) and queue:
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(item, BaseException):
                    raise item
                return item
        return FakeResponse(status=404, body="not found", content_type="text/plain")


def load_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


@pytest.fixture
def no_wait():
    return wait_none()
