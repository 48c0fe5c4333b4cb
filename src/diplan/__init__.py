from diplan._internal.collection import ServiceCollection, ServiceModule
from diplan._internal.dependency_graph import DependencyGraph
from diplan._internal.descriptors import KeyedServiceDescriptor, Lifetime, ServiceDescriptor
from diplan._internal.implementation_factories import (
    ImplementationFactory,
    ImplementationFactoryLookup,
    ImplementationFactoryRegistry,
)
from diplan._internal.lazy import Lazy, ServiceFactory
from diplan._internal.options import ContainerOptions
from diplan._internal.provider import (
    ServiceProvider,
    ServiceProviderBase,
    ServiceRegistrationInfo,
    ServiceScope,
)
from diplan._internal.scope_manager import ScopeManager
from diplan.exceptions import (
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

__all__ = [
    "AsyncServiceInSyncContextError",
    "CircularDependencyError",
    "ContainerBuildError",
    "ContainerOptions",
    "DIPlanError",
    "DependencyGraph",
    "DependencyInferenceError",
    "DisposalError",
    "ImplementationFactory",
    "ImplementationFactoryLookup",
    "ImplementationFactoryRegistry",
    "InvalidContainerStateError",
    "InvalidRegistrationError",
    "KeyedServiceDescriptor",
    "Lazy",
    "Lifetime",
    "MissingServiceError",
    "ScopeManager",
    "ScopeViolationError",
    "ServiceCollection",
    "ServiceDescriptor",
    "ServiceFactory",
    "ServiceModule",
    "ServiceProvider",
    "ServiceProviderBase",
    "ServiceRegistrationInfo",
    "ServiceScope",
]
