"""Tests for the meridian error hierarchy."""

import pytest

from meridian.core.errors import (
    ConfigError,
    ConnectError,
    ErrorCategory,
    ErrorContext,
    InvalidAppIdError,
    MeridianError,
    QueryError,
    RemoteCallError,
    ScheduleContractError,
    ServiceUnavailableError,
    SnapshotError,
    categorize_error,
)


class TestErrorDefaults:
    """Category and retry defaults come from the subclass."""

    @pytest.mark.parametrize(
        ("error", "category", "retryable"),
        [
            (ConnectError("down"), ErrorCategory.NETWORK, True),
            (ScheduleContractError("bad"), ErrorCategory.VALIDATION, False),
            (QueryError("bad"), ErrorCategory.VALIDATION, False),
            (InvalidAppIdError("nope"), ErrorCategory.CONFIG, False),
            (ServiceUnavailableError("schedule"), ErrorCategory.ORCHESTRATION, True),
            (SnapshotError("disk"), ErrorCategory.STORAGE, False),
        ],
    )
    def test_category_and_retryable(self, error, category, retryable):
        assert error.category == category
        assert error.retryable is retryable

    def test_contract_error_is_type_error(self):
        """Contract violations can be caught as TypeError."""
        with pytest.raises(TypeError):
            raise ScheduleContractError("missing handler")

    def test_query_error_is_value_error(self):
        assert isinstance(QueryError("x"), ValueError)

    def test_invalid_app_id_message(self):
        err = InvalidAppIdError("ghost")
        assert err.message == "The app ID 'ghost' is invalid"
        assert err.app_id == "ghost"
        assert err.context.app_id == "ghost"
        assert isinstance(err, ConfigError)

    def test_service_unavailable_carries_service(self):
        err = ServiceUnavailableError("schedule")
        assert err.service == "schedule"
        assert "schedule" in str(err)

    def test_remote_call_error_type(self):
        err = RemoteCallError("boom", remote_type="KeyError")
        assert err.remote_type == "KeyError"
        assert err.category == ErrorCategory.ORCHESTRATION


class TestErrorContext:
    """Fluent context and serialization."""

    def test_with_context_sets_typed_fields_and_metadata(self):
        err = ConnectError("down").with_context(peer_id="schedule-1", attempt=3)
        assert err.context.peer_id == "schedule-1"
        assert err.context.metadata == {"attempt": 3}

    def test_to_dict(self):
        cause = OSError("refused")
        err = ConnectError("down", retry_after=5, cause=cause).with_context(app_id="web-1")
        d = err.to_dict()
        assert d["error_type"] == "ConnectError"
        assert d["category"] == "NETWORK"
        assert d["retry_after"] == 5
        assert d["context"] == {"app_id": "web-1"}
        assert d["cause"] == "refused"
        assert err.__cause__ is cause

    def test_context_to_dict_skips_none(self):
        assert ErrorContext(task_id="abc").to_dict() == {"task_id": "abc"}

    def test_repr(self):
        assert repr(MeridianError("x")) == "MeridianError('x', category=INTERNAL)"


class TestHelpers:
    def test_categorize_error(self):
        assert categorize_error(SnapshotError("x")) == ErrorCategory.STORAGE
        assert categorize_error(ConnectionError()) == ErrorCategory.NETWORK
        assert categorize_error(ValueError()) == ErrorCategory.VALIDATION
        assert categorize_error(KeyError()) == ErrorCategory.CONFIG
        assert categorize_error(RuntimeError()) == ErrorCategory.UNKNOWN
