"""Catalogue port (abstract interface).

The ordering engine reads product prices, stock and descriptive data from
the catalogue when an item is added to a cart. Stock is read-only here;
reservations belong to the catalogue side.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CatalogueProduct:
    """Product data as seen by ordering at add-to-cart time."""

    product_id: str
    name: str
    product_type: str
    sku: str | None = None
    category: str | None = None
    thumbnail: str | None = None
    sale_price: float | None = None
    daily_rate: float | None = None
    service_price: float | None = None
    stock: int | None = None
    active: bool = True

    def price_for(self, item_type: str) -> float | None:
        """Unit price for the way the product is being ordered, or None if not offered that way."""
        return {
            "purchase": self.sale_price,
            "rental": self.daily_rate,
            "service": self.service_price,
        }.get(item_type)


class Catalogue(ABC):
    """Abstract catalogue interface."""

    @abstractmethod
    def get_product(self, product_id: str) -> CatalogueProduct | None:
        """Return the product, or None if the catalogue does not know it."""
        ...
