"""Tests for core/errors.py."""

from groundplan.core.errors import (
    ApprovalRequired,
    CycleDetected,
    ExitCode,
    FatalProviderError,
    GroundplanError,
    LockHeld,
    StalePlan,
    TransientProviderError,
    TypeMismatch,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)
from groundplan.state import LockToken


class TestExitCodes:
    def test_error_families(self):
        assert CycleDetected(["a", "b", "a"]).exit_code == ExitCode.VALIDATION_ERROR
        assert TypeMismatch("a", "network", "bucket").exit_code == ExitCode.VALIDATION_ERROR
        assert LockHeld("dev").exit_code == ExitCode.STATE_ERROR
        assert StalePlan("dev", 1, 2).exit_code == ExitCode.STATE_ERROR
        assert ApprovalRequired("prod").exit_code == ExitCode.BLOCKED
        assert FatalProviderError("boom").exit_code == ExitCode.PROVIDER_ERROR

    def test_retryable_flag(self):
        assert TransientProviderError("rate limited").retryable
        assert not FatalProviderError("gone").retryable


class TestMessages:
    def test_cycle_message_names_members(self):
        error = CycleDetected(["a", "b", "a"])
        assert error.message == "Dependency cycle detected: a -> b -> a"
        assert error.cycle == ["a", "b", "a"]

    def test_lock_held_reports_holder(self):
        token = LockToken(
            scope="dev", lock_id="abc", holder="ci:42", acquired_at=0.0, lease_expires_at=60.0
        )
        error = LockHeld("dev", token)
        assert error.details == {"scope": "dev", "lock_id": "abc", "holder": "ci:42"}

    def test_format_includes_details(self):
        error = ValidationError("Bad input", {"field": "size"})
        assert format_error_message(error) == "Bad input (field=size)"

    def test_format_without_details(self):
        assert format_error_message(GroundplanError("Plain")) == "Plain"


class TestMainWithErrorHandling:
    def test_success_passes_through(self):
        @main_with_error_handling()
        def command() -> int:
            return 0

        assert command() == 0

    def test_groundplan_error_maps_to_exit_code(self, capsys):
        @main_with_error_handling()
        def command() -> int:
            raise ValidationError("Bad input")

        assert command() == ExitCode.VALIDATION_ERROR
        assert "Bad input" in capsys.readouterr().out

    def test_unexpected_error(self):
        @main_with_error_handling()
        def command() -> int:
            raise RuntimeError("surprise")

        assert command() == ExitCode.UNKNOWN_ERROR

    def test_keyboard_interrupt(self):
        @main_with_error_handling()
        def command() -> int:
            raise KeyboardInterrupt

        assert command() == 130
