from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True, slots=True, kw_only=True)
class ContainerOptions:
    """Control build-time validation and runtime diagnostics of a container.

    Examples:
        .. code-block:: python

            provider = services.build_service_provider(ContainerOptions.DEVELOPMENT)
            provider = services.build_service_provider(
                ContainerOptions(validate_scopes=False),
            )

    """

    validate_on_build: bool = True
    """Detect dependency cycles and missing constructor dependencies at build time."""
    validate_scopes: bool = True
    """Reject singletons that capture scoped services at build time."""
    fail_fast: bool = False
    """Raise the first build problem instead of one aggregate ``ContainerBuildError``."""
    enable_diagnostics: bool = False
    """Log cache hits, cache misses and instance creation at ``DEBUG`` level."""

    PRODUCTION: ClassVar[ContainerOptions]
    """Validate on build, skip scope validation, no diagnostics."""
    DEVELOPMENT: ClassVar[ContainerOptions]
    """Validate everything and log resolution diagnostics."""


ContainerOptions.PRODUCTION = ContainerOptions(validate_scopes=False)
ContainerOptions.DEVELOPMENT = ContainerOptions(enable_diagnostics=True)
