"""Client-side optimistic copy of a customer's cart.

Every mutation is applied to the local copy immediately and then sent to the
server. The server is authoritative:

* on success, the server's cart replaces the local copy wholesale;
* when the server cannot be reached, the local change is kept and the mirror
  is flagged unsynced until the next successful server response;
* when the server rejects the change, the local copy is restored to what it
  was before the change and the rejection is re-raised.

Local totals are estimates computed with the same pricing rules as the
server (without tax, which only the server knows).
"""

import copy
import json
import threading
from datetime import date
from pathlib import Path
from uuid import uuid4

import structlog

from ordering.errors import ItemNotFound
from ordering.mirror.port import BackendUnavailable, CartBackend, CartRejected
from ordering.pricing import ItemType, price_line, price_order, rental_duration

logger = structlog.get_logger(__name__)

LOCAL_ID_PREFIX = "local-"


def _empty_cart(customer_id: str) -> dict:
    return {
        "cart_id": None,
        "customer_id": customer_id,
        "status": "cart",
        "order_type": "purchase",
        "item_count": 0,
        "items": [],
        "pricing": price_order([], currency="NGN").as_dict(),
    }


def _rental_days(rental: dict) -> int:
    return rental_duration(date.fromisoformat(str(rental["start_date"])), date.fromisoformat(str(rental["end_date"])))


def _price_local_line(line: dict) -> None:
    duration = _rental_days(line["rental"]) if line["item_type"] == ItemType.RENTAL.value else None
    priced = price_line(line["item_type"], line["quantity"], line["unit_price"], duration)
    line["base_total"] = priced.base_total
    line["discount_amount"] = priced.discount_amount
    line["subtotal"] = priced.subtotal


def _recompute(cart: dict) -> None:
    previous = cart.get("pricing") or {}
    summary = price_order(
        [line["subtotal"] for line in cart["items"]],
        currency=previous.get("currency", "NGN"),
        shipping_total=previous.get("shipping_total", 0.0),
    )
    cart["pricing"] = summary.as_dict()
    cart["item_count"] = sum(line["quantity"] for line in cart["items"])
    kinds = {line["item_type"] for line in cart["items"]}
    if len(kinds) > 1:
        cart["order_type"] = "mixed"
    elif kinds == {ItemType.RENTAL.value}:
        cart["order_type"] = "rental"
    elif kinds == {ItemType.SERVICE.value}:
        cart["order_type"] = "booking"
    else:
        cart["order_type"] = "purchase"


class LocalCartMirror:
    def __init__(self, customer_id: str, backend: CartBackend, path: str | Path | None = None) -> None:
        self.customer_id = customer_id
        self.backend = backend
        self.path = Path(path) if path else None
        self.cart = _empty_cart(customer_id)
        self.synced = False
        self._lock = threading.RLock()

    # -------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------
    @property
    def items(self) -> list[dict]:
        return self.cart["items"]

    @property
    def item_count(self) -> int:
        return self.cart["item_count"]

    @property
    def total(self) -> float:
        return self.cart["pricing"]["total"]

    def _find(self, item_id) -> dict:
        line = next((line for line in self.cart["items"] if line["item_id"] == str(item_id)), None)
        if line is None:
            raise ItemNotFound()
        return line

    # -------------------------------------------------------------------
    # Synchronisation
    # -------------------------------------------------------------------
    def _accept(self, server_cart: dict | None) -> None:
        self.cart = copy.deepcopy(server_cart) if server_cart else _empty_cart(self.customer_id)
        self.synced = True

    def refresh(self) -> bool:
        """Replace the local copy with the server's cart. Returns False if the server is unreachable."""
        with self._lock:
            try:
                self._accept(self.backend.fetch())
            except BackendUnavailable as exc:
                self.synced = False
                logger.warning("Cart refresh failed; keeping local copy", customer_id=self.customer_id, error=str(exc))
                return False
            finally:
                self.save()
            return True

    def _mutate(self, apply_locally, send):
        with self._lock:
            before = copy.deepcopy(self.cart)
            before_synced = self.synced

            try:
                apply_locally(self.cart)
                _recompute(self.cart)
            except Exception:
                self.cart = before
                raise

            try:
                self._accept(send())
            except BackendUnavailable as exc:
                self.synced = False
                logger.warning("Cart change kept locally until the server is reachable", error=str(exc))
            except CartRejected as exc:
                self.cart, self.synced = before, before_synced
                logger.info("Server rejected cart change; local copy restored", code=exc.code)
                raise
            finally:
                self.save()
            return self.cart

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def add_item(self, product_id, item_type, quantity=1, rental=None, service=None, unit_price=0.0) -> dict:
        item_type = ItemType(item_type).value

        def apply(cart):
            existing = None
            if item_type == ItemType.PURCHASE.value:
                existing = next(
                    (
                        line
                        for line in cart["items"]
                        if line["product_id"] == str(product_id) and line["item_type"] == item_type
                    ),
                    None,
                )
            if existing is not None:
                existing["quantity"] += quantity
                _price_local_line(existing)
                return
            line = {
                "item_id": f"{LOCAL_ID_PREFIX}{uuid4().hex}",
                "product_id": str(product_id),
                "item_type": item_type,
                "quantity": quantity,
                "unit_price": unit_price,
                "item_status": "pending",
                "rental": rental,
                "service": service,
            }
            _price_local_line(line)
            cart["items"].append(line)

        return self._mutate(
            apply,
            lambda: self.backend.add_item(str(product_id), item_type, quantity, rental=rental, service=service),
        )

    def update_item(self, item_id, changes: dict) -> dict:
        if changes.get("quantity") == 0:
            return self.remove_item(item_id)

        def apply(cart):
            line = self._find(item_id)
            if "quantity" in changes:
                line["quantity"] = changes["quantity"]
            for detail in ("rental", "service"):
                if changes.get(detail) and line.get(detail) is not None:
                    line[detail] = {**line[detail], **changes[detail]}
            _price_local_line(line)

        return self._mutate(apply, lambda: self.backend.update_item(str(item_id), changes))

    def remove_item(self, item_id) -> dict:
        def apply(cart):
            line = self._find(item_id)
            cart["items"].remove(line)

        return self._mutate(apply, lambda: self.backend.remove_item(str(item_id)))

    def clear(self) -> dict:
        def apply(cart):
            cart["items"] = []

        return self._mutate(apply, self.backend.clear)

    # -------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------
    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"customer_id": self.customer_id, "synced": self.synced, "cart": self.cart}
        self.path.write_text(json.dumps(payload, default=str), encoding="utf-8")

    @classmethod
    def load(cls, path: str | Path, customer_id: str, backend: CartBackend) -> "LocalCartMirror":
        """Restore a mirror saved earlier; a missing or unreadable file yields an empty one."""
        mirror = cls(customer_id, backend, path)
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            return mirror
        except ValueError as exc:
            logger.warning("Discarding unreadable cart mirror file", path=str(path), error=str(exc))
            return mirror
        if data.get("customer_id") == customer_id and isinstance(data.get("cart"), dict):
            mirror.cart = data["cart"]
            mirror.synced = bool(data.get("synced"))
        return mirror
