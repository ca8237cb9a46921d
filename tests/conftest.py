import os
from pathlib import Path

import pytest

# Directory -> marker; integration and mirror tests are also marked slow
_LAYER_MARKERS = {
    "domain": ("domain",),
    "application": ("application",),
    "bdd": ("bdd",),
    "integration": ("integration", "slow"),
    "mirror": ("integration", "slow"),
}


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config overlay from domain.toml to run tests against (test, production)",
    )


def pytest_configure(config):
    """Select the domain.toml overlay before any domain module is imported."""
    os.environ["PROTEAN_ENV"] = config.getoption("env")


def pytest_collection_modifyitems(config, items):
    for item in items:
        parts = Path(item.fspath).parts
        layer = next((part for part in parts if part in _LAYER_MARKERS), None)
        if layer is None:
            continue
        for marker in _LAYER_MARKERS[layer]:
            if marker == "slow" and any(m.name == "fast" for m in item.iter_markers()):
                continue
            item.add_marker(getattr(pytest.mark, marker))
