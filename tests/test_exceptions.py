"""Tests for the exception hierarchy and message formats."""

from __future__ import annotations

import pytest

from diplan import (
    AsyncServiceInSyncContextError,
    CircularDependencyError,
    ContainerBuildError,
    DependencyInferenceError,
    DIPlanError,
    DisposalError,
    InvalidContainerStateError,
    InvalidRegistrationError,
    MissingServiceError,
    ScopeViolationError,
)


class Cache:
    pass


class Session:
    pass


class _Broken:
    pass


@pytest.mark.parametrize(
    "error_type",
    [
        AsyncServiceInSyncContextError,
        CircularDependencyError,
        ContainerBuildError,
        DependencyInferenceError,
        DisposalError,
        InvalidContainerStateError,
        InvalidRegistrationError,
        MissingServiceError,
        ScopeViolationError,
    ],
)
def test_every_error_derives_from_base(error_type: type[Exception]) -> None:
    assert issubclass(error_type, DIPlanError)


def test_dependency_inference_error_is_a_registration_error() -> None:
    assert issubclass(DependencyInferenceError, InvalidRegistrationError)


def test_circular_dependency_message_lists_chain() -> None:
    error = CircularDependencyError([Cache, Session, Cache])

    assert error.chain == [Cache, Session, Cache]
    assert str(error) == "Circular dependency detected: Cache -> Session -> Cache"


def test_container_build_error_lists_every_problem() -> None:
    error = ContainerBuildError(["first problem", "second problem"])

    assert error.errors == ["first problem", "second problem"]
    assert str(error) == (
        "Container build failed with 2 error(s):\n  - first problem\n  - second problem"
    )


def test_scope_violation_message() -> None:
    error = ScopeViolationError(Cache, Session)

    assert error.singleton_type is Cache
    assert error.scoped_type is Session
    assert str(error) == 'ScopeViolation: "Cache" (singleton) depends on "Session" (scoped).'


def test_missing_service_messages() -> None:
    assert str(MissingServiceError(Cache)) == 'No service registered for type "Cache".'
    keyed = MissingServiceError(Cache, "primary")
    assert keyed.key == "primary"
    assert str(keyed) == "No keyed service registered for type \"Cache\" with key 'primary'."
    assert str(MissingServiceError(Cache, message="custom")) == "custom"


def test_missing_service_message_for_non_type_token() -> None:
    assert str(MissingServiceError("settings")) == "No service registered for type \"'settings'\"."


def test_disposal_error_exposes_first_failure_and_full_list() -> None:
    first_cause = RuntimeError("first")
    second_cause = OSError("second")
    broken, other = _Broken(), Cache()

    error = DisposalError([(broken, first_cause), (other, second_cause)])

    assert error.service_type is _Broken
    assert error.cause is first_cause
    assert len(error.errors) == 2
    assert str(error) == "2 instance(s) failed to dispose: _Broken, Cache"


def test_empty_disposal_error_accessors() -> None:
    error = DisposalError([])

    assert error.service_type is None
    assert error.cause is None
