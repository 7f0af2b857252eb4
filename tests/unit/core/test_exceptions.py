"""
Tests for dirconsole/shared/core/exceptions.py
"""
from dirconsole.shared.core.exceptions import (
    ConfigurationError,
    ConsoleError,
    NetworkError,
    StaleCompletion,
    ValidationError,
    as_console_error,
)


class TestConsoleErrors:
    def test_base_error_defaults(self):
        exc = ConsoleError("boom")
        assert exc.message == "boom"
        assert exc.code == "internal_error"
        assert exc.details == {}
        assert str(exc) == "[internal_error] boom"

    def test_subclass_codes(self):
        assert NetworkError("x").code == "network_error"
        assert ValidationError("x").code == "validation_error"
        assert ConfigurationError("x").code == "config_error"
        assert StaleCompletion("x").code == "stale_completion"

    def test_custom_code_and_details(self):
        exc = ValidationError("Nothing selected", code="empty_selection", details={"n": 0})
        assert isinstance(exc, ConsoleError)
        assert exc.code == "empty_selection"
        assert exc.details == {"n": 0}


class TestAsConsoleError:
    def test_typed_error_passes_through(self):
        exc = NetworkError("already typed")
        assert as_console_error(exc, "ignored") is exc

    def test_untyped_error_is_wrapped(self):
        cause = RuntimeError("socket closed")
        wrapped = as_console_error(cause, "Error trying to fetch user list")

        assert isinstance(wrapped, NetworkError)
        assert wrapped.message == "Error trying to fetch user list"
        assert wrapped.details == {"cause": "socket closed", "cause_type": "RuntimeError"}
        assert wrapped.__cause__ is cause
