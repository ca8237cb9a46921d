"""API fixtures: the ordering routers mounted on a bare FastAPI app."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from ordering.api.errors import register_exception_handlers
from ordering.api.routes import admin_router, cart_router, order_router, payment_router


@pytest.fixture()
def client():
    app = FastAPI()
    app.include_router(cart_router)
    app.include_router(order_router)
    app.include_router(admin_router)
    app.include_router(payment_router)
    register_exception_handlers(app)
    return TestClient(app)
