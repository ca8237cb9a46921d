"""Catalogue adapter backed by the catalogue service's HTTP API."""

import httpx

from ordering.catalogue.port import Catalogue, CatalogueProduct


class HttpCatalogue(Catalogue):
    def __init__(self, base_url: str, timeout: float = 5.0, client: httpx.Client | None = None) -> None:
        self.client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def get_product(self, product_id: str) -> CatalogueProduct | None:
        response = self.client.get(f"/products/{product_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()

        pricing = data.get("pricing") or {}
        inventory = data.get("inventory") or {}
        images = data.get("images") or {}
        return CatalogueProduct(
            product_id=str(data.get("id", product_id)),
            name=data["name"],
            product_type=data.get("type", "equipment"),
            sku=data.get("sku"),
            category=data.get("category"),
            thumbnail=images.get("thumbnail"),
            sale_price=pricing.get("sale_price"),
            daily_rate=(pricing.get("rental_price") or {}).get("daily"),
            service_price=pricing.get("service_price"),
            stock=inventory.get("available_units", inventory.get("stock_quantity")),
            active=data.get("is_active", True),
        )
