from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ._errors import InvalidBindingError
from ._metadata import Dependency, Inject, Tagged, as_dependency, declared_dependencies
from ._tokens import Token, TokenLike, TypeToken, as_token
from ._validation import validate_implementation


if TYPE_CHECKING:
    from collections.abc import Callable

    from ._container import Container
    from ._context import ResolutionContext

    DependencyLike = Dependency | Inject | Tagged | TokenLike
    Guard = Callable[[ResolutionContext], bool]

T = TypeVar("T")
B = TypeVar("B", bound="BindingSpec[Any]")


class Lifetime(Enum):
    SINGLETON = "singleton"
    TRANSIENT = "transient"
    SCOPED = "scoped"
    REQUEST = "request"

    @property
    def is_scoped(self) -> bool:
        return self in (Lifetime.SCOPED, Lifetime.REQUEST)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(eq=False)
class Binding:
    """Recipe for producing a token's instance.

    Exactly one producer is set: ``implementation``, ``factory``, ``value`` or
    ``instance``. A class token without a producer binds to itself. Bindings
    hash by identity; instance caches are keyed by the binding object.
    """

    token: Token
    lifetime: Lifetime = Lifetime.TRANSIENT
    implementation: type | None = None
    factory: Callable[..., Any] | None = None
    value: Any = UNSET
    instance: Any = UNSET
    dependencies: tuple[Dependency, ...] | None = None
    tags: tuple[str, ...] = ()
    when: Guard | None = None
    lazy: bool = False

    def __post_init__(self) -> None:
        self.token = as_token(self.token)
        self.tags = tuple(self.tags)

        producers = [
            self.implementation is not None,
            self.factory is not None,
            self.value is not UNSET,
            self.instance is not UNSET,
        ]
        if sum(producers) > 1:
            msg = f"Binding for {self.token} declares more than one producer"
            raise InvalidBindingError(msg)

        if not any(producers):
            if not isinstance(self.token, TypeToken):
                msg = f"Binding for {self.token} has no implementation, factory, value or instance"
                raise InvalidBindingError(msg)
            self.implementation = self.token.cls

        if (
            self.implementation is not None
            and isinstance(self.token, TypeToken)
            and self.implementation is not self.token.cls
        ):
            try:
                validate_implementation(self.token.cls, self.implementation)
            except TypeError as exc:
                raise InvalidBindingError(str(exc)) from exc

        if self.dependencies is not None:
            self.dependencies = tuple(as_dependency(d) for d in self.dependencies)
        elif self.producer is not None:
            self.dependencies = declared_dependencies(self.producer)

    @property
    def producer(self) -> Callable[..., Any] | None:
        return self.implementation if self.implementation is not None else self.factory

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags


class BindingSpec(Generic[T]):
    """Producer, scope and metadata selectors shared by the binding builders."""

    def __init__(self, token: TokenLike, lifetime: Lifetime) -> None:
        self._token = as_token(token)
        self._lifetime = lifetime
        self._producer: dict[str, Any] = {}
        self._dependencies: tuple[DependencyLike, ...] | None = None
        self._tags: list[str] = []
        self._when: Guard | None = None
        self._lazy = False

    def to(self: B, implementation: type, *dependencies: DependencyLike) -> B:
        self._set_producer("implementation", implementation)
        if dependencies:
            self._dependencies = dependencies
        return self

    def to_self(self: B) -> B:
        if not isinstance(self._token, TypeToken):
            msg = f"Only class tokens can be bound to themselves, got {self._token}"
            raise InvalidBindingError(msg)
        return self.to(self._token.cls)

    def to_factory(self: B, factory: Callable[..., Any], *dependencies: DependencyLike) -> B:
        self._set_producer("factory", factory)
        if dependencies:
            self._dependencies = dependencies
        return self

    def to_value(self: B, value: Any) -> B:
        self._set_producer("value", value)
        self._lifetime = Lifetime.SINGLETON
        return self

    def to_instance(self: B, instance: Any) -> B:
        self._set_producer("instance", instance)
        self._lifetime = Lifetime.SINGLETON
        return self

    def in_scope(self: B, lifetime: Lifetime) -> B:
        self._lifetime = lifetime
        return self

    def in_singleton_scope(self: B) -> B:
        return self.in_scope(Lifetime.SINGLETON)

    def in_transient_scope(self: B) -> B:
        return self.in_scope(Lifetime.TRANSIENT)

    def in_scoped_scope(self: B) -> B:
        return self.in_scope(Lifetime.SCOPED)

    def in_request_scope(self: B) -> B:
        return self.in_scope(Lifetime.REQUEST)

    def with_tags(self: B, *tags: str) -> B:
        self._tags.extend(tags)
        return self

    def with_dependencies(self: B, *dependencies: DependencyLike) -> B:
        self._dependencies = dependencies
        return self

    def lazy(self: B) -> B:
        self._lazy = True
        return self

    def _set_producer(self, kind: str, producer: Any) -> None:
        if self._producer:
            (existing,) = self._producer
            msg = f"Binding for {self._token} already has a {existing} producer; cannot add a {kind}"
            raise InvalidBindingError(msg)
        self._producer[kind] = producer

    def _binding_fields(self) -> dict[str, Any]:
        return {
            "token": self._token,
            "lifetime": self._lifetime,
            "dependencies": self._dependencies,
            "tags": tuple(self._tags),
            "lazy": self._lazy,
            **self._producer,
        }


class BindingBuilder(BindingSpec[T]):
    """Fluent builder returned by ``Container.bind``.

    Example:
      container.bind("cache").to(RedisCache).in_singleton_scope().with_tags("infra").build()

    """

    def __init__(self, container: Container, token: TokenLike) -> None:
        super().__init__(token, container.options.default_scope)
        self._container = container

    def when(self, predicate: Guard) -> BindingBuilder[T]:
        self._when = predicate
        return self

    def build(self) -> Container:
        binding = Binding(**self._binding_fields(), when=self._when)
        return self._container.register(binding)
