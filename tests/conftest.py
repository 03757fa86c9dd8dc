"""Pytest configuration and shared fixtures for the test suite."""

import logging
from typing import Callable

import httpx
import pytest

from couchstream.clients.db.cloudant.DBClientCloudant import DBClientCloudant
from couchstream.clients.db.couchdb.DBClientCouchdb import DBClientCouchdb
from couchstream.helper.HelperConfig import HelperConfig
from couchstream.logging.logging_setup import ColorLogger


class RecordingHandler:
    """MockTransport handler that records every request and answers from a route table.

    Routes map "METHOD /path" to a response factory ``(request) -> httpx.Response``.
    Unknown routes answer 404 like the server does for missing documents.
    """

    def __init__(self, routes: dict[str, Callable[[httpx.Request], httpx.Response]] | None = None):
        self.routes = routes or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = f"{request.method} {request.url.path}"
        if route in self.routes:
            return self.routes[route](request)
        return httpx.Response(404, json={"error": "not_found", "reason": "missing"})

    def on(self, method: str, path: str, status_code: int = 200, json_body=None, content: bytes | str | None = None, headers: dict | None = None):
        def respond(request: httpx.Request) -> httpx.Response:
            if content is not None:
                return httpx.Response(status_code, content=content, headers=headers)
            return httpx.Response(status_code, json=json_body, headers=headers)
        self.routes[f"{method} {path}"] = respond
        return self


# Environment fixtures
@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Provide a complete client configuration in the environment."""
    monkeypatch.setenv("DB_ENGINES", "[couchdb]")
    monkeypatch.setenv("DB_TIMEOUT", "5")
    monkeypatch.setenv("DB_COUCHDB_BASE_URL", "http://couch.test:5984")
    monkeypatch.setenv("DB_COUCHDB_USERNAME", "admin")
    monkeypatch.setenv("DB_COUCHDB_PASSWORD", "secret")
    monkeypatch.setenv("DB_CLOUDANT_BASE_URL", "https://acme.cloudant.com")
    monkeypatch.setenv("DB_CLOUDANT_USERNAME", "acme")
    monkeypatch.setenv("DB_CLOUDANT_PASSWORD", "cloudpass")
    monkeypatch.delenv("DB_CLOUDANT_ADMIN_URL", raising=False)
    return monkeypatch


@pytest.fixture
def logger() -> ColorLogger:
    return ColorLogger(logging.getLogger("couchstream.tests"))


@pytest.fixture
def helper_config(env: pytest.MonkeyPatch, logger: ColorLogger) -> HelperConfig:
    return HelperConfig(logger=logger)


# Client fixtures
@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def couch_client(helper_config: HelperConfig, handler: RecordingHandler) -> DBClientCouchdb:
    """A CouchDB client whose requests are answered by ``handler``. Boot it with ``async with``."""
    return DBClientCouchdb(helper_config=helper_config, transport=httpx.MockTransport(handler))


@pytest.fixture
def cloudant_client(helper_config: HelperConfig, handler: RecordingHandler) -> DBClientCloudant:
    return DBClientCloudant(helper_config=helper_config, transport=httpx.MockTransport(handler))
