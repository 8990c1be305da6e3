"""Declarative dependency metadata.

A producer (class or factory) exposes an ordered tuple of ``Dependency``
records. They come from the first source found:

1. an explicit ``@inject(...)`` declaration (or the binding's own dependency
   list), or per-parameter ``Annotated[T, Inject(...)]`` / ``Tagged(...)`` markers;
2. runtime type hints, where a non-builtin class annotation becomes the
   primary token and the parameter name a secondary one;
3. the parameter name alone.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any, TypeVar, get_args, get_origin, get_type_hints

from ._tokens import NamedToken, Token, TokenLike, TypeToken, as_token


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from ._binding import Lifetime


logger = logging.getLogger(__name__)

T = TypeVar("T")

INJECT_ATTR = "__wirebind_inject__"
INJECTABLE_ATTR = "__wirebind_injectable__"

_SKIPPED_KINDS = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)


@dataclass(frozen=True)
class Inject:
    """Per-parameter marker: ``db: Annotated[Database, Inject("db.primary")]``."""

    token: TokenLike
    optional: bool = False


@dataclass(frozen=True)
class Tagged:
    """Per-parameter marker injecting every binding carrying ``tag``."""

    tag: str


@dataclass(frozen=True)
class InjectableMetadata:
    lifetime: Lifetime | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class Dependency:
    """One argument of a producer.

    ``candidates`` are tried in order; the first resolvable one wins. ``name``
    is the keyword to pass the value under, ``None`` meaning positional.
    """

    candidates: tuple[Token, ...] = ()
    name: str | None = None
    default: Any = inspect.Parameter.empty
    tag: str | None = None

    @property
    def has_default(self) -> bool:
        return self.default is not inspect.Parameter.empty

    def describe(self) -> str:
        if self.tag is not None:
            return f"tagged:{self.tag}"
        return " | ".join(str(t) for t in self.candidates)


def as_dependency(item: Dependency | Inject | Tagged | TokenLike) -> Dependency:
    if isinstance(item, Dependency):
        return item
    if isinstance(item, Inject):
        return Dependency((as_token(item.token),), default=None if item.optional else inspect.Parameter.empty)
    if isinstance(item, Tagged):
        return Dependency(tag=item.tag)
    return Dependency((as_token(item),))


def inject(*dependencies: Dependency | Inject | Tagged | TokenLike) -> Callable[[T], T]:
    """Declare a producer's positional dependencies explicitly.

    Example:
      @inject("config", Database)
      class Repository:
          def __init__(self, config, db): ...

    """
    declared = tuple(as_dependency(d) for d in dependencies)

    def decorator(target: T) -> T:
        setattr(target, INJECT_ATTR, declared)
        return target

    return decorator


def injectable(
    cls: type[T] | None = None,
    /,
    *,
    lifetime: Lifetime | None = None,
    tags: Iterable[str] = (),
) -> Any:
    """Mark a class with the lifetime/tags used when it is auto-registered."""
    metadata = InjectableMetadata(lifetime=lifetime, tags=tuple(tags))

    def decorator(target: type[T]) -> type[T]:
        setattr(target, INJECTABLE_ATTR, metadata)
        return target

    if cls is not None:
        return decorator(cls)
    return decorator


def get_injectable_metadata(cls: type) -> InjectableMetadata | None:
    return _own_attribute(cls, INJECTABLE_ATTR)


def get_declared_dependencies(producer: object) -> tuple[Dependency, ...] | None:
    return _own_attribute(producer, INJECT_ATTR)


def declared_dependencies(producer: Callable[..., Any]) -> tuple[Dependency, ...]:
    explicit = get_declared_dependencies(producer)
    if explicit is not None:
        return explicit

    try:
        sig = inspect.signature(producer)
    except (TypeError, ValueError):
        return ()

    hints = _get_type_hints(producer)
    return tuple(
        _parameter_dependency(p, hints.get(name, inspect.Parameter.empty))
        for name, p in sig.parameters.items()
        if p.kind not in _SKIPPED_KINDS
    )


def _parameter_dependency(p: inspect.Parameter, hint: Any) -> Dependency:
    keyword = None if p.kind is inspect.Parameter.POSITIONAL_ONLY else p.name
    base, marker = _split_annotated(hint)

    if isinstance(marker, Inject):
        default = p.default
        if marker.optional and default is inspect.Parameter.empty:
            default = None
        return Dependency((as_token(marker.token),), keyword, default)

    if isinstance(marker, Tagged):
        return Dependency(name=keyword, default=p.default, tag=marker.tag)

    candidates: list[Token] = []
    if _is_class_hint(base):
        candidates.append(TypeToken(base))
    candidates.append(NamedToken(p.name))
    return Dependency(tuple(candidates), keyword, p.default)


def _split_annotated(hint: Any) -> tuple[Any, Inject | Tagged | None]:
    if get_origin(hint) is not Annotated:
        return hint, None

    base, *extras = get_args(hint)
    for extra in extras:
        if isinstance(extra, (Inject, Tagged)):
            return base, extra
    return base, None


def _is_class_hint(hint: Any) -> bool:
    return (
        isinstance(hint, type)
        and get_origin(hint) is None
        and getattr(hint, "__module__", "") != "builtins"
    )


def _own_attribute(target: object, name: str) -> Any:
    # Class attributes are inherited; a subclass must declare its own metadata.
    if inspect.isclass(target):
        return vars(target).get(name)
    return getattr(target, name, None)


def _get_type_hints(producer: Callable[..., Any]) -> dict[str, Any]:
    target: Any = inspect.getattr_static(producer, "__init__") if inspect.isclass(producer) else producer
    try:
        hints = get_type_hints(target, include_extras=True)
    except TypeError:
        hints = {}
    except NameError as exc:
        logger.warning(
            "'%s' name error retrieving %s type hints",
            exc.name,
            getattr(producer, "__qualname__", repr(producer)),
        )
        hints = {}

    hints.pop("return", None)
    return hints
