"""Shared pytest fixtures for diplan tests."""

import pytest

from diplan import ContainerOptions, ImplementationFactoryRegistry, ServiceCollection


@pytest.fixture()
def services() -> ServiceCollection:
    """Empty collection with constructor autowiring enabled."""
    return ServiceCollection()


@pytest.fixture()
def factories() -> ImplementationFactoryRegistry:
    """Implementation factory registry without autowiring."""
    return ImplementationFactoryRegistry(autowire=False)


@pytest.fixture()
def unvalidated() -> ContainerOptions:
    """Options that skip every build-time check."""
    return ContainerOptions(validate_on_build=False, validate_scopes=False)
