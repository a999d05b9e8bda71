import sys
from pathlib import Path

import pytest

# Put repo/python on sys.path so `import lightbasis` works from a fresh clone.
_PKG_DIR = Path(__file__).resolve().parent / "python"
if str(_PKG_DIR) not in sys.path:
    sys.path.insert(0, str(_PKG_DIR))


def pytest_addoption(parser):
    parser.addoption("--skip-slow", action="store_true", default=False, help="skip tests marked slow")


def pytest_collection_modifyitems(config, items):
    if not config.getoption("--skip-slow"):
        return

    skip_slow = pytest.mark.skip(reason="--skip-slow given; skipping full-resolution tests")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)
