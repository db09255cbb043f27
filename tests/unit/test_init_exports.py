from __future__ import annotations

import pytest

import dynaschema


def test_init_exposes_lazy_exports_via_getattr() -> None:
    assert callable(dynaschema.build_get_request)
    assert callable(dynaschema.build_put_request)
    assert callable(dynaschema.build_delete_request)
    assert callable(dynaschema.build_update_request)
    assert callable(dynaschema.build_query_request)
    assert callable(dynaschema.build_scan_request)
    assert callable(dynaschema.decode_items)
    assert callable(dynaschema.PlaceholderTable)
    assert dynaschema.MaxInValues == 100


def test_unknown_names_raise_attribute_error() -> None:
    with pytest.raises(AttributeError):
        dynaschema.does_not_exist  # noqa: B018


def test_all_names_resolve() -> None:
    for name in dynaschema.__all__:
        assert getattr(dynaschema, name) is not None
