"""Shared fixtures: an in-memory Falcon API served through httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from falcon_mcp.falcon_client import FalconClient

BASE_URL = "https://api.test.crowdstrike.com"


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFalcon:
    """Records every request and answers from a (method, path) route table."""

    def __init__(self):
        self.requests = []
        self.routes = {}
        self.token_calls = 0
        self.expires_in = 1799
        self.token_response = None
        self.token_delay = 0.0

    def on(self, method, path, body=None, status=200):
        self.routes[(method, path)] = (status, body if body is not None else {"resources": []})

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/oauth2/token":
            self.token_calls += 1
            if self.token_delay:
                await asyncio.sleep(self.token_delay)
            if self.token_response is not None:
                canned = self.token_response
                return httpx.Response(canned.status_code, content=canned.content,
                                      headers={"Content-Type": "application/json"})
            return httpx.Response(201, json={
                "access_token": f"token-{self.token_calls}",
                "token_type": "bearer",
                "expires_in": self.expires_in,
            })
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"errors": [{"code": 404, "message": f"no route for {key}"}]})
        status, body = self.routes[key]
        return httpx.Response(status, json=body)

    @property
    def api_requests(self):
        return [r for r in self.requests if r.url.path != "/oauth2/token"]

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]


def body_of(request: httpx.Request):
    return json.loads(request.content)


@pytest.fixture
def falcon():
    return FakeFalcon()


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def client(falcon, clock):
    async with FalconClient("test-id", "test-secret", base_url=BASE_URL,
                            transport=httpx.MockTransport(falcon.handle),
                            clock=clock) as c:
        yield c
