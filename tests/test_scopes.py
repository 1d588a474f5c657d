# Tests for scope normalisation and the immutable scope catalog.
# Created: 2026-03-02

import pytest

from lapse.scopes import (
    SCOPE_GROUPS,
    ScopeCatalog,
    dedupe_scopes,
    get_scope_catalog,
    has_duplicates,
    normalize_scopes,
    split_scope_string,
)


class TestNormalisation:
    def test_normalize_trims_and_drops_blanks(self):
        assert normalize_scopes([" a ", "", "  ", "b"]) == ["a", "b"]

    def test_normalize_keeps_duplicates(self):
        assert normalize_scopes(["a", "a "]) == ["a", "a"]

    def test_normalize_none(self):
        assert normalize_scopes(None) == []

    def test_dedupe_keeps_order(self):
        assert dedupe_scopes(["b", "a", "b"]) == ["b", "a"]

    def test_split_scope_string(self):
        assert split_scope_string("  user:read\ttimelapse:read user:read ") == [
            "user:read",
            "timelapse:read",
        ]
        assert split_scope_string("") == []
        assert split_scope_string(None) == []

    def test_has_duplicates(self):
        assert has_duplicates(["a", "a"])
        assert not has_duplicates(["a", "b"])


class TestScopeCatalog:
    def test_from_groups_flattens(self):
        catalog = get_scope_catalog()
        expected = {name for group in SCOPE_GROUPS.values() for name in group}
        assert catalog.names == expected
        assert len(catalog) == len(expected)
        assert "user:read" in catalog
        assert "admin" not in catalog

    def test_unknown_in_request_order(self):
        catalog = get_scope_catalog()
        assert catalog.unknown(["admin", "user:read", "root"]) == ["admin", "root"]

    def test_describe(self):
        catalog = ScopeCatalog.from_groups({"G": {"a:read": "Read A"}})
        assert catalog.describe(["a:read", "missing"]) == {"a:read": "Read A"}

    def test_immutable(self):
        catalog = get_scope_catalog()
        with pytest.raises(TypeError):
            catalog.descriptions["evil:write"] = "nope"
        with pytest.raises(AttributeError):
            catalog.descriptions = {}
