"""Catalogue adapter factory.

Selected by the ``CATALOGUE_ADAPTER`` environment variable:
- ``fake`` (default): in-memory catalogue for development and tests
- ``http``: the catalogue service at ``CATALOGUE_URL``
"""

import os

from ordering.catalogue.port import Catalogue

_catalogue_instance: Catalogue | None = None


def get_catalogue() -> Catalogue:
    """Return the configured catalogue adapter (singleton)."""
    global _catalogue_instance
    if _catalogue_instance is None:
        adapter = os.environ.get("CATALOGUE_ADAPTER", "fake")
        if adapter == "fake":
            from ordering.catalogue.fake_adapter import FakeCatalogue

            _catalogue_instance = FakeCatalogue()
        elif adapter == "http":
            from ordering.catalogue.http_adapter import HttpCatalogue

            _catalogue_instance = HttpCatalogue(os.environ["CATALOGUE_URL"])
        else:
            raise ValueError(f"Unknown catalogue adapter: {adapter}")
    return _catalogue_instance


def set_catalogue(catalogue: Catalogue) -> None:
    """Override the active catalogue (useful for tests)."""
    global _catalogue_instance
    _catalogue_instance = catalogue


def reset_catalogue() -> None:
    global _catalogue_instance
    _catalogue_instance = None
