"""Dependency injection core with contextual bindings and service providers.

This package resolves services from tokens (names or classes) through a
container of bindings, with lifetimes, cycle and depth guards, environment
aware contextual overrides and a two-phase service provider bootstrap.

Exports:
- `Container`: Registry of bindings and the resolver. Supports child containers
  and per-unit-of-work `Scope` containers.
- `Lifetime`: Enum for instance lifetimes (singleton, transient, scoped, request).
- `Binding` / `ContextualBinding`: Recipes for producing a token's instance; the
  contextual kind is picked by priority among those whose conditions pass.
- `EnvironmentManager`: Current deployment environment, its variables and features.
- `ServiceProvider` / `ProviderManager`: Bundles of bindings with
  register/boot/shutdown hooks.
- `inject`, `injectable`, `Inject`, `Tagged`: Explicit dependency declarations.
"""

from . import conditions
from ._binding import Binding, BindingBuilder, Lifetime
from ._container import Container, ContainerOptions, Scope
from ._context import ResolutionContext
from ._contextual import BindingCondition, ConditionKind, ContextualBinding, ContextualBindingBuilder
from ._environment import EnvironmentConfig, EnvironmentManager
from ._errors import (
    CircularDependencyError,
    ContextualConditionUnmetError,
    DuplicateProviderError,
    InvalidBindingError,
    MaxDepthExceededError,
    MissingProviderDependencyError,
    ProviderError,
    ProviderLifecycleError,
    ResolutionError,
    UnknownEnvironmentError,
    UnresolvedTokenError,
)
from ._metadata import Dependency, Inject, Tagged, inject, injectable
from ._providers import (
    ConditionalServiceProvider,
    DeferredServiceProvider,
    ProviderManager,
    ProviderState,
    ServiceProvider,
)
from ._tokens import NamedToken, Token, TokenLike, TypeToken, as_token


__all__ = [
    "Binding",
    "BindingBuilder",
    "BindingCondition",
    "CircularDependencyError",
    "ConditionKind",
    "ConditionalServiceProvider",
    "Container",
    "ContainerOptions",
    "ContextualBinding",
    "ContextualBindingBuilder",
    "ContextualConditionUnmetError",
    "DeferredServiceProvider",
    "Dependency",
    "DuplicateProviderError",
    "EnvironmentConfig",
    "EnvironmentManager",
    "Inject",
    "InvalidBindingError",
    "Lifetime",
    "MaxDepthExceededError",
    "MissingProviderDependencyError",
    "NamedToken",
    "ProviderError",
    "ProviderLifecycleError",
    "ProviderManager",
    "ProviderState",
    "ResolutionContext",
    "ResolutionError",
    "Scope",
    "ServiceProvider",
    "Tagged",
    "Token",
    "TokenLike",
    "TypeToken",
    "UnknownEnvironmentError",
    "UnresolvedTokenError",
    "as_token",
    "conditions",
    "inject",
    "injectable",
]
