from __future__ import annotations

import inspect
import logging
import threading
import uuid
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, TypeVar, overload

from ._binding import UNSET, Binding, BindingBuilder, Lifetime
from ._context import ResolutionContext
from ._contextual import ContextualBinding, ContextualBindingBuilder, sort_by_priority
from ._environment import EnvironmentManager
from ._errors import (
    CircularDependencyError,
    ContextualConditionUnmetError,
    MaxDepthExceededError,
    ResolutionError,
    UnresolvedTokenError,
)
from ._metadata import get_injectable_metadata
from ._store import InstanceStore
from ._tokens import NamedToken, Token, TokenLike, TypeToken, as_token
from ._validation import is_constructible


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from ._metadata import Dependency

    Interceptor = Callable[[Any, ResolutionContext], Any]


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ContainerOptions:
    auto_register: bool = True
    strict_mode: bool = False
    max_depth: int = 50
    default_scope: Lifetime = Lifetime.TRANSIENT
    enable_interception: bool = True


class Container:
    """Dependency injection container.

    - bind tokens (names or classes) to classes, factories, values or instances
    - lifetimes: singleton / transient / scoped / request
    - contextual bindings picked by environment, parent or request conditions
    - child containers delegate unbound tokens to their parent.

    Example:
      container = Container()
      container.bind("db").to(Database).in_singleton_scope().build()
      container.resolve("db")

    """

    def __init__(
        self,
        options: ContainerOptions | None = None,
        *,
        environment: EnvironmentManager | None = None,
    ) -> None:
        self.options = options or ContainerOptions()
        self._environment = environment or EnvironmentManager.with_presets()
        self._bindings: dict[Token, Binding] = {}
        self._contextual: dict[Token, list[ContextualBinding]] = {}
        self._interceptors: dict[Token, list[Interceptor]] = {}
        self._deferred: dict[Token, Callable[[], None]] = {}
        self._store = InstanceStore()
        self._lock = threading.RLock()
        self._parent: Container | None = None
        self._scope_id: str | None = None

    @property
    def environment(self) -> EnvironmentManager:
        return self._environment

    @property
    def parent(self) -> Container | None:
        return self._parent

    # Registration

    def bind(self, token: TokenLike) -> BindingBuilder[Any]:
        return BindingBuilder(self, token)

    def register(self, binding: Binding) -> Container:
        """Commit a binding, replacing any plain binding for the same token."""
        if isinstance(binding, ContextualBinding):
            return self.register_contextual(binding)

        with self._lock:
            previous = self._bindings.get(binding.token)
            self._bindings[binding.token] = binding
        if previous is not None:
            self._store.evict(previous)
        return self

    def singleton(self, token: TokenLike, implementation: type | None = None, *dependencies: Any) -> Container:
        return self._bind_class(token, implementation, Lifetime.SINGLETON, dependencies)

    def transient(self, token: TokenLike, implementation: type | None = None, *dependencies: Any) -> Container:
        return self._bind_class(token, implementation, Lifetime.TRANSIENT, dependencies)

    def scoped(self, token: TokenLike, implementation: type | None = None, *dependencies: Any) -> Container:
        return self._bind_class(token, implementation, Lifetime.SCOPED, dependencies)

    def value(self, token: TokenLike, value: Any) -> Container:
        return self.bind(token).to_value(value).build()

    def instance(self, token: TokenLike, instance: Any) -> Container:
        return self.bind(token).to_instance(instance).build()

    def factory(
        self,
        token: TokenLike,
        factory: Callable[..., Any],
        *dependencies: Any,
        lifetime: Lifetime | None = None,
    ) -> Container:
        builder = self.bind(token).to_factory(factory, *dependencies)
        if lifetime is not None:
            builder.in_scope(lifetime)
        return builder.build()

    def unbind(self, token: TokenLike) -> Container:
        """Remove the plain binding for ``token`` and its cached instances."""
        key = as_token(token)
        with self._lock:
            binding = self._bindings.pop(key, None)
        if binding is not None:
            self._store.evict(binding)
        return self

    def clear(self) -> Container:
        with self._lock:
            self._bindings.clear()
            self._contextual.clear()
            self._interceptors.clear()
            self._deferred.clear()
            self._store.clear()
        return self

    def intercept(self, token: TokenLike, interceptor: Interceptor) -> Container:
        """Run ``interceptor(instance, context)`` on every fresh construction of ``token``."""
        with self._lock:
            self._interceptors.setdefault(as_token(token), []).append(interceptor)
        return self

    def defer(self, tokens: Iterable[TokenLike], loader: Callable[[], None]) -> None:
        """Call ``loader`` once, the first time any of ``tokens`` is resolved."""
        with self._lock:
            for token in tokens:
                self._deferred[as_token(token)] = loader

    def undefer(self, tokens: Iterable[TokenLike]) -> None:
        with self._lock:
            for token in tokens:
                self._deferred.pop(as_token(token), None)

    # Contextual bindings

    def bind_contextual(self, token: TokenLike) -> ContextualBindingBuilder[Any]:
        return ContextualBindingBuilder(self, token)

    def register_contextual(self, binding: ContextualBinding) -> Container:
        with self._lock:
            bindings = self._contextual.setdefault(binding.token, [])
            bindings.append(binding)
            sort_by_priority(bindings)
        return self

    def for_development(self, token: TokenLike) -> ContextualBindingBuilder[Any]:
        return self.bind_contextual(token).when_environment("development")

    def for_production(self, token: TokenLike) -> ContextualBindingBuilder[Any]:
        return self.bind_contextual(token).when_environment("production")

    def for_testing(self, token: TokenLike) -> ContextualBindingBuilder[Any]:
        return self.bind_contextual(token).when_environment("test", "testing")

    def for_staging(self, token: TokenLike) -> ContextualBindingBuilder[Any]:
        return self.bind_contextual(token).when_environment("staging")

    # Introspection

    def is_bound(self, token: TokenLike) -> bool:
        key = as_token(token)
        if key in self._bindings or key in self._contextual or key in self._deferred:
            return True
        return self._parent is not None and self._parent.is_bound(key)

    def can_resolve(self, token: TokenLike) -> bool:
        """Whether ``resolve`` has a source for ``token`` (binding, container or constructible class)."""
        key = as_token(token)
        if self.is_bound(key):
            return True
        if not isinstance(key, TypeToken):
            return False
        if self._is_container_token(key):
            return True
        return is_constructible(key.cls) and (self.options.auto_register or not self.options.strict_mode)

    def get_bindings(self) -> dict[Token, Binding]:
        return dict(self._bindings)

    def get_contextual_bindings(self, token: TokenLike) -> list[ContextualBinding]:
        return list(self._contextual.get(as_token(token), ()))

    def get_tagged_bindings(self, tag: str) -> list[Binding]:
        return [b for b in self._visible_bindings() if b.has_tag(tag)]

    # Resolution

    @overload
    def resolve(
        self,
        token: type[T],
        *,
        request_id: str | None = ...,
        environment: str | None = ...,
        **overrides: Any,
    ) -> T: ...

    @overload
    def resolve(
        self,
        token: str | Token,
        *,
        request_id: str | None = ...,
        environment: str | None = ...,
        **overrides: Any,
    ) -> Any: ...

    def resolve(
        self,
        token: TokenLike,
        *,
        request_id: str | None = None,
        environment: str | None = None,
        **overrides: Any,
    ) -> Any:
        """Resolve the token to an instance.

        - contextual bindings whose conditions pass win, by priority
        - then the plain binding, then the parent container
        - then auto-registration of concrete classes.
        ``overrides`` are passed to the top-level producer as keyword arguments.
        """
        context = ResolutionContext(
            container=self,
            token=as_token(token),
            environment=environment or self._environment.current,
            request_id=request_id or self._scope_id,
        )
        return self._resolve(context, overrides)

    def resolve_all(
        self,
        token_or_tag: TokenLike,
        *,
        request_id: str | None = None,
        environment: str | None = None,
    ) -> list[Any]:
        """Resolve the binding for a token plus every binding tagged with it."""
        key = as_token(token_or_tag)
        tag = key.name if isinstance(key, NamedToken) else None
        matches = [b for b in self._visible_bindings() if b.token == key or (tag is not None and b.has_tag(tag))]
        return [self.resolve(b.token, request_id=request_id, environment=environment) for b in matches]

    def resolve_tagged(
        self,
        tag: str,
        *,
        request_id: str | None = None,
        environment: str | None = None,
    ) -> list[Any]:
        return [
            self.resolve(b.token, request_id=request_id, environment=environment)
            for b in self.get_tagged_bindings(tag)
        ]

    def preload(self) -> None:
        """Build every non-lazy singleton bound in this container."""
        for binding in list(self._bindings.values()):
            if binding.lifetime is Lifetime.SINGLETON and not binding.lazy:
                self.resolve(binding.token)

    # Children and scopes

    def create_child(self, **options: Any) -> Container:
        """Child container: own bindings and caches, unbound tokens go to this container."""
        child = Container(replace(self.options, **options), environment=self._environment)
        child._parent = self
        return child

    def create_scope(self, scope_id: str | None = None) -> Scope:
        """Create a scope that resolves scoped bindings under its own scope id."""
        return Scope(self, scope_id or f"scope_{uuid.uuid4().hex}", _from_parent=True)

    def drop_scope(self, scope_id: str) -> None:
        """Discard the scoped instances cached for ``scope_id`` here and in every ancestor."""
        container: Container | None = self
        while container is not None:
            for instance in container._store.drop_scope(scope_id).values():
                _dispose(instance)
            container = container._parent

    # Internals

    def _resolve(self, context: ResolutionContext, overrides: Mapping[str, Any] | None = None) -> Any:
        token = context.token
        if token in context.resolving:
            raise CircularDependencyError(context.chain(token))
        if context.depth > self.options.max_depth:
            raise MaxDepthExceededError(context.chain(token), self.options.max_depth)

        context.resolving[token] = None
        try:
            return self._resolve_token(context, overrides or {})
        finally:
            context.resolving.pop(token, None)

    def _resolve_token(self, context: ResolutionContext, overrides: Mapping[str, Any]) -> Any:
        token = context.token
        self._load_deferred(token)

        contextual = self._select_contextual(context)
        if contextual is not None:
            return self._instantiate_contextual(contextual, context, overrides)

        unmet: ContextualConditionUnmetError | None = None
        binding = self._bindings.get(token)
        if binding is not None:
            if binding.when is None or self._guard_passes(binding, context):
                return self._instantiate(binding, context, overrides)
            unmet = ContextualConditionUnmetError(token)

        if isinstance(token, TypeToken) and self._is_container_token(token):
            return self

        if self._parent is not None:
            try:
                return self._parent._resolve(context.fresh(self._parent), overrides)
            except UnresolvedTokenError as exc:
                if unmet is not None and exc.token == token:
                    raise unmet from None
                raise

        if unmet is not None:
            raise unmet

        if isinstance(token, TypeToken) and is_constructible(token.cls):
            if self.options.auto_register:
                return self._instantiate(self._auto_register(token.cls), context, overrides)
            if self.options.strict_mode:
                raise UnresolvedTokenError(token, "strict mode")
            return self._instantiate(Binding(token, lifetime=Lifetime.TRANSIENT), context, overrides)

        raise UnresolvedTokenError(token)

    def _select_contextual(self, context: ResolutionContext) -> ContextualBinding | None:
        for binding in list(self._contextual.get(context.token, ())):
            if binding.matches(context):
                return binding
        return None

    def _instantiate_contextual(
        self,
        binding: ContextualBinding,
        context: ResolutionContext,
        overrides: Mapping[str, Any],
    ) -> Any:
        try:
            return self._instantiate(binding, context, overrides)
        except (CircularDependencyError, MaxDepthExceededError):
            raise
        except Exception as exc:
            if binding.fallback is None:
                raise
            logger.warning("Contextual binding failed, using fallback for %s: %s", context.token, exc)
            return self._instantiate(binding.fallback, context, overrides)

    def _instantiate(self, binding: Binding, context: ResolutionContext, overrides: Mapping[str, Any]) -> Any:
        context.binding = binding

        def build() -> Any:
            return self._build(binding, context, overrides)

        if binding.lifetime is Lifetime.SINGLETON:
            return self._store.get_or_create_singleton(binding, build)
        if binding.lifetime.is_scoped and context.request_id is not None:
            return self._store.get_or_create_scoped(context.request_id, binding, build)
        return build()

    def _build(self, binding: Binding, context: ResolutionContext, overrides: Mapping[str, Any]) -> Any:
        if binding.value is not UNSET:
            instance = binding.value
        elif binding.instance is not UNSET:
            instance = binding.instance
        else:
            producer = binding.producer
            if producer is None:
                msg = f"Invalid binding configuration for: {binding.token}"
                raise ResolutionError(msg)
            args, kwargs = self._resolve_arguments(binding.dependencies or (), context, overrides)
            instance = producer(*args, **kwargs)

        if self.options.enable_interception:
            for interceptor in self._interceptors.get(binding.token, ()):
                instance = interceptor(instance, context)
        return instance

    def _resolve_arguments(
        self,
        dependencies: Iterable[Dependency],
        context: ResolutionContext,
        overrides: Mapping[str, Any],
    ) -> tuple[list[Any], dict[str, Any]]:
        args: list[Any] = []
        kwargs = dict(overrides)
        for dependency in dependencies:
            if dependency.name is not None and dependency.name in overrides:
                continue
            value = self._resolve_dependency(dependency, context)
            if dependency.name is None:
                args.append(value)
            else:
                kwargs[dependency.name] = value
        return args, kwargs

    def _resolve_dependency(self, dependency: Dependency, context: ResolutionContext) -> Any:
        if dependency.tag is not None:
            return [self._resolve(context.child(b.token)) for b in self.get_tagged_bindings(dependency.tag)]

        for candidate in dependency.candidates:
            if not self.can_resolve(candidate):
                continue
            try:
                return self._resolve(context.child(candidate))
            except (UnresolvedTokenError, ContextualConditionUnmetError) as exc:
                # Only skip to the next candidate when this exact token had no source.
                if exc.token != candidate:
                    raise

        if dependency.has_default:
            return dependency.default

        if not dependency.candidates:
            msg = f"Dependency of {context.token} declares no token"
            raise ResolutionError(msg)

        where = f"parameter '{dependency.name}'" if dependency.name else "positional dependency"
        raise UnresolvedTokenError(dependency.candidates[0], f"required by {where} of {context.token}")

    def _guard_passes(self, binding: Binding, context: ResolutionContext) -> bool:
        try:
            return bool(binding.when(context))  # type: ignore[misc]
        except Exception:
            logger.warning("Error evaluating binding guard for %s", context.token, exc_info=True)
            return False

    def _auto_register(self, cls: type) -> Binding:
        metadata = get_injectable_metadata(cls)
        lifetime = metadata.lifetime if metadata and metadata.lifetime else self.options.default_scope
        binding = Binding(TypeToken(cls), lifetime=lifetime, tags=metadata.tags if metadata else ())
        with self._lock:
            binding = self._bindings.setdefault(binding.token, binding)
        logger.debug("Auto-registered %s (%s)", cls.__qualname__, binding.lifetime.value)
        return binding

    def _load_deferred(self, token: Token) -> None:
        with self._lock:
            loader = self._deferred.pop(token, None)
        if loader is not None:
            logger.debug("Loading deferred provider for %s", token)
            try:
                loader()
            except Exception:
                # Keep the token deferred so the next resolve reports the same failure.
                with self._lock:
                    self._deferred.setdefault(token, loader)
                raise

    def _is_container_token(self, token: TypeToken) -> bool:
        return inspect.isclass(token.cls) and issubclass(token.cls, Container) and isinstance(self, token.cls)

    def _visible_bindings(self) -> list[Binding]:
        # Local bindings shadow the parent's bindings for the same token.
        seen: set[Token] = set()
        visible: list[Binding] = []
        container: Container | None = self
        while container is not None:
            for token, binding in list(container._bindings.items()):
                if token not in seen:
                    seen.add(token)
                    visible.append(binding)
            container = container._parent
        return visible

    def _bind_class(
        self,
        token: TokenLike,
        implementation: type | None,
        lifetime: Lifetime,
        dependencies: tuple[Any, ...],
    ) -> Container:
        builder = self.bind(token).in_scope(lifetime)
        if implementation is not None:
            builder.to(implementation, *dependencies)
        elif dependencies:
            builder.with_dependencies(*dependencies)
        return builder.build()


class Scope(Container):
    """A child container tied to one scope id.

    Scoped and request bindings resolved through it are cached per scope id,
    in whichever container owns the binding. Closing the scope discards them.

    Example:
      with container.create_scope("req-42") as scope:
          scope.resolve("unit_of_work")

    """

    def __init__(self, parent: Container, scope_id: str, *, _from_parent: bool = False) -> None:
        if not _from_parent:
            msg = "Scope instances must be created via Container.create_scope()"
            raise RuntimeError(msg)
        super().__init__(parent.options, environment=parent.environment)
        self._parent = parent
        self._scope_id = scope_id
        self._closed = False

    @property
    def scope_id(self) -> str:
        return self._scope_id  # type: ignore[return-value]

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.drop_scope(self.scope_id)

    def __enter__(self) -> Scope:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _dispose(instance: Any) -> None:
    for name in ("dispose", "close"):
        hook = getattr(instance, name, None)
        if callable(hook) and not inspect.iscoroutinefunction(hook):
            hook()
            return
