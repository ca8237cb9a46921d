"""In-memory catalogue for development and testing."""

from ordering.catalogue.port import Catalogue, CatalogueProduct


class FakeCatalogue(Catalogue):
    """Configurable in-memory catalogue.

    Products are registered with ``add_product``; ``configure(available=False)``
    simulates an unreachable catalogue service.
    """

    def __init__(self) -> None:
        self.products: dict[str, CatalogueProduct] = {}
        self.available: bool = True
        self.calls: list[str] = []

    def configure(self, available: bool = True) -> None:
        self.available = available

    def add_product(self, product: CatalogueProduct) -> CatalogueProduct:
        self.products[str(product.product_id)] = product
        return product

    def get_product(self, product_id: str) -> CatalogueProduct | None:
        self.calls.append(str(product_id))
        if not self.available:
            raise ConnectionError("Catalogue service unavailable")
        return self.products.get(str(product_id))
