"""Every name a package lists in ``__all__`` must be importable from it."""

import importlib

import pytest

PACKAGES = [
    "closure_kernel.db",
    "closure_kernel.domain",
    "closure_kernel.models",
    "closure_kernel.selectors",
    "closure_kernel.services",
    "closure_engines",
    "closure_config",
    "closure_services",
]


@pytest.mark.parametrize("package", PACKAGES)
def test_exported_names_resolve(package):
    module = importlib.import_module(package)

    missing = [name for name in module.__all__ if not hasattr(module, name)]

    assert missing == []


def test_db_package_exports_building_blocks():
    from closure_kernel.db import Base, TrackedBase, UUIDString, session_scope

    assert issubclass(TrackedBase, Base)
    assert UUIDString.cache_ok
    assert callable(session_scope)
