"""Tests for visibility routing and string normalization.

Covers:
- Global access for ENGINEERING and IT only
- Missing department treated as SALES (fail closed)
- SQL predicate push-down vs in-memory filter agree
- normalize_token / contains_text helpers
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from src.routing.normalize import contains_text, normalize_department, normalize_selection, normalize_token
from src.routing.visibility import filter_visible, has_global_access, is_visible, visibility_clause
from src.schemas.directory import Viewer


def _viewer(user_id: str = "u1", department: str = "SALES") -> Viewer:
    return Viewer(id=user_id, department=department, display_name=user_id)


RECORDS = [
    {"id": "r1", "submitted_by": "u1"},
    {"id": "r2", "submitted_by": "u2"},
    SimpleNamespace(id="r3", submitted_by="u1"),
    {"id": "r4"},
]


class TestGlobalAccess:
    @pytest.mark.parametrize("department", ["ENGINEERING", "IT", "engineering", " it "])
    def test_privileged(self, department):
        assert has_global_access(department) is True

    @pytest.mark.parametrize("department", ["SALES", "HR", "ENGINEERING TEAM", ""])
    def test_not_privileged(self, department):
        assert has_global_access(department) is False

    def test_missing_department_fails_closed(self):
        assert has_global_access(None) is False


class TestFilter:
    def test_engineering_sees_everything(self):
        assert filter_visible(_viewer(department="ENGINEERING"), RECORDS) == RECORDS

    def test_sales_sees_own_only(self):
        visible = filter_visible(_viewer("u1"), RECORDS)
        assert [getattr(r, "id", None) or r["id"] for r in visible] == ["r1", "r3"]

    def test_record_without_submitter_hidden_from_sales(self):
        assert is_visible(_viewer("u1"), {"id": "r4"}) is False

    def test_it_sees_foreign_record(self):
        assert is_visible(_viewer("x", "IT"), {"submitted_by": "u2"}) is True


class TestClause:
    def test_no_predicate_for_global_access(self):
        assert visibility_clause(_viewer(department="IT")) is None

    def test_predicate_for_sales(self):
        clause = visibility_clause(_viewer("u1"))
        assert clause is not None
        compiled = clause.compile(compile_kwargs={"literal_binds": True})
        assert "submitted_by" in str(compiled)
        assert "'u1'" in str(compiled)


class TestNormalize:
    def test_token(self):
        assert normalize_token("  DIAlux   Sim ") == "dialux sim"
        assert normalize_token(None) == ""

    def test_department_fallback(self):
        assert normalize_department(None, "sales") == "SALES"
        assert normalize_department(" engineering ", "SALES") == "ENGINEERING"

    def test_selection_drops_blanks(self):
        assert normalize_selection(["A", " ", "a", None]) == frozenset({"a"})

    def test_contains_text(self):
        assert contains_text(["Maria", "Santos", "REF-01"], "santos ref") is True
        assert contains_text(["Maria", None], "") is True
        assert contains_text(["Maria"], "jose") is False
