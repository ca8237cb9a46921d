"""Mirror fixtures: an HTTP cart backend wired to the in-process cart API."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from ordering.api.errors import register_exception_handlers
from ordering.api.routes import cart_router
from ordering.mirror.http_backend import HttpCartBackend
from ordering.mirror.port import BackendUnavailable, CartBackend

CUSTOMER_ID = "cust-mirror-001"


class UnreachableBackend(CartBackend):
    """Behaves like a server that cannot be reached."""

    def __init__(self):
        self.attempts = 0

    def _fail(self, *args, **kwargs):
        self.attempts += 1
        raise BackendUnavailable("connection refused")

    fetch = add_item = update_item = remove_item = clear = _fail


@pytest.fixture()
def customer_id():
    return CUSTOMER_ID


@pytest.fixture()
def backend(customer_id):
    app = FastAPI()
    app.include_router(cart_router)
    register_exception_handlers(app)
    return HttpCartBackend(customer_id, client=TestClient(app))


@pytest.fixture()
def unreachable():
    return UnreachableBackend()
