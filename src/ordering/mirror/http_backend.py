"""Cart backend talking to the ordering HTTP API.

Any ``httpx.Client`` works, including FastAPI's ``TestClient``.
"""

import httpx

from ordering.mirror.port import BackendUnavailable, CartBackend, CartRejected


class HttpCartBackend(CartBackend):
    def __init__(
        self,
        customer_id: str,
        base_url: str = "http://localhost:8000",
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.customer_id = customer_id
        self.client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def _send(self, method: str, path: str, json=None) -> dict | None:
        try:
            response = self.client.request(method, path, json=json, headers={"X-Customer-Id": self.customer_id})
        except httpx.TransportError as exc:
            raise BackendUnavailable(str(exc)) from exc

        if response.status_code >= 500:
            raise BackendUnavailable(f"Server responded {response.status_code}")
        if response.status_code >= 400:
            body = response.json() if response.content else {}
            raise CartRejected(
                status_code=response.status_code,
                code=body.get("error", "rejected"),
                message=body.get("message") or body.get("detail") or "Request rejected",
                fields=body.get("fields"),
            )
        return response.json() if response.content else None

    def fetch(self) -> dict | None:
        return self._send("GET", "/cart")

    def add_item(self, product_id, item_type, quantity, rental=None, service=None) -> dict:
        payload = {"product_id": product_id, "item_type": item_type, "quantity": quantity}
        if rental is not None:
            payload["rental"] = rental
        if service is not None:
            payload["service"] = service
        return self._send("POST", "/cart/items", json=payload)

    def update_item(self, item_id, changes) -> dict:
        return self._send("PATCH", f"/cart/items/{item_id}", json=changes)

    def remove_item(self, item_id) -> dict:
        return self._send("DELETE", f"/cart/items/{item_id}")

    def clear(self) -> dict:
        return self._send("DELETE", "/cart")
