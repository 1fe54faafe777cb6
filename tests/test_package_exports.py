"""Package export checks: every name in __all__ resolves."""

from __future__ import annotations

import importlib

import pytest


@pytest.mark.parametrize(
    "module_name",
    [
        "src.quo_sync.sync",
        "src.quo_sync.adapters",
        "src.quo_sync.quo",
        "src.quo_sync.webhooks",
    ],
)
def test_all_exports_resolve(module_name):
    module = importlib.import_module(module_name)
    for name in module.__all__:
        assert getattr(module, name) is not None, name


def test_unknown_lazy_attribute_raises():
    module = importlib.import_module("src.quo_sync.sync")
    with pytest.raises(AttributeError):
        module.NotAThing  # noqa: B018


def test_worker_entry_point_imports():
    from src.quo_sync.main import build_worker, parse_args

    args = parse_args(["--integration-id", "int-1"])
    assert args.integration_id == "int-1"
    assert callable(build_worker)
