"""Shared fixtures: a stub transport adapter and a service wired to it."""

import json
from typing import Optional

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from otf_booking.models import AppConfig
from otf_booking.service import OTFBookingService

AUTH_URL = "https://auth.otf.test/"
IO_BASE_URL = "https://io.otf.test/"
CO_BASE_URL = "https://co.otf.test/"

USERNAME = "member@example.com"
PASSWORD = "hunter2"


class StubAdapter(BaseAdapter):
    """Records every prepared request and answers from a queue of canned responses."""

    def __init__(self):
        super().__init__()
        self.requests = []
        self.send_kwargs = []
        self._queue = []

    def queue(self, status: int = 200, json_body=None, body=b"", headers: Optional[dict] = None):
        headers = dict(headers or {})
        if json_body is not None:
            body = json.dumps(json_body)
            headers.setdefault("Content-Type", "application/json")
        if isinstance(body, str):
            body = body.encode("utf-8")
        self._queue.append((status, body, headers))

    def fail(self, error: Exception):
        self._queue.append(error)

    def send(self, request, **kwargs):
        self.requests.append(request)
        self.send_kwargs.append(kwargs)
        item = self._queue.pop(0)
        if isinstance(item, Exception):
            raise item

        status, body, headers = item
        response = requests.Response()
        response.status_code = status
        response._content = body
        response.headers = CaseInsensitiveDict(headers)
        response.encoding = "utf-8"
        response.url = request.url
        response.request = request
        return response

    def close(self):
        pass

    @property
    def last(self):
        return self.requests[-1]


@pytest.fixture
def config():
    return AppConfig(
        username=USERNAME,
        password=PASSWORD,
        client_id="client-123",
        io_base_url=IO_BASE_URL,
        co_base_url=CO_BASE_URL,
        auth_url=AUTH_URL,
    )


@pytest.fixture
def stub():
    return StubAdapter()


@pytest.fixture
def service(config, stub):
    return OTFBookingService(config, transport=stub)


@pytest.fixture
def authed_service(service, stub):
    stub.queue(json_body={"AuthenticationResult": {"IdToken": "abc"}})
    service.authenticate(USERNAME, PASSWORD)
    return service
