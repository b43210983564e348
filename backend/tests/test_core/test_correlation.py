"""Tests for correlation ID generation and context management."""

import re

from core.correlation import (
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from models.exceptions import DomainException, InfrastructureException


class TestGenerateCorrelationId:
    """Tests for generate_correlation_id function."""

    def test_returns_hex_string(self) -> None:
        assert re.match(r"^[0-9a-f]{8}$", generate_correlation_id())

    def test_generates_unique_ids(self) -> None:
        ids = {generate_correlation_id() for _ in range(1000)}
        assert len(ids) == 1000


class TestCorrelationScope:
    """Tests for the correlation_scope context manager."""

    def setup_method(self) -> None:
        set_correlation_id("")

    def test_sets_and_restores(self) -> None:
        with correlation_scope() as cid:
            assert get_correlation_id() == cid
            assert len(cid) == 8
        assert get_correlation_id() == ""

    def test_explicit_id(self) -> None:
        with correlation_scope("abc12345") as cid:
            assert cid == "abc12345"
        assert get_correlation_id() == ""

    def test_nested_scope_reuses_outer_id(self) -> None:
        with correlation_scope() as outer:
            with correlation_scope() as inner:
                assert inner == outer
            assert get_correlation_id() == outer

    def test_restored_after_exception(self) -> None:
        try:
            with correlation_scope("deadbeef"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert get_correlation_id() == ""


class TestExceptionCorrelation:
    """Domain exceptions pick up the active correlation ID."""

    def setup_method(self) -> None:
        set_correlation_id("")

    def test_uses_scope_id(self) -> None:
        with correlation_scope("feedface"):
            exc = InfrastructureException()
        assert exc.correlation_id == "feedface"
        assert exc.retryable is True

    def test_generates_id_outside_scope(self) -> None:
        exc = DomainException("Test error")
        assert re.match(r"^[0-9a-f]{8}$", exc.correlation_id)

    def test_explicit_id_wins(self) -> None:
        with correlation_scope("feedface"):
            exc = DomainException("Test error", correlation_id="explicit")
        assert exc.correlation_id == "explicit"
