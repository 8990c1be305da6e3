from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from ._binding import Binding, BindingSpec
from ._tokens import TokenLike, as_token


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from ._container import Container
    from ._context import ResolutionContext

    Predicate = Callable[[ResolutionContext], bool]


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ENVIRONMENT = "development"


class ConditionKind(Enum):
    ENVIRONMENT = "environment"
    CUSTOM = "custom"
    TAG = "tag"
    PARENT = "parent"
    REQUEST = "request"


@dataclass(frozen=True)
class BindingCondition:
    kind: ConditionKind
    predicate: Predicate
    description: str = ""

    def __call__(self, context: ResolutionContext) -> bool:
        return bool(self.predicate(context))


@dataclass(eq=False)
class ContextualBinding(Binding):
    """A binding selected only when all of its conditions pass.

    Among the contextual bindings of a token the highest ``priority`` wins;
    equal priorities keep registration order.
    """

    conditions: list[BindingCondition] = field(default_factory=list)
    priority: int = 0
    fallback: Binding | None = None

    def matches(self, context: ResolutionContext) -> bool:
        return evaluate_conditions(self.conditions, context)


def evaluate_conditions(conditions: Iterable[BindingCondition], context: ResolutionContext) -> bool:
    """AND of every condition. A condition that raises counts as not met."""
    for condition in conditions:
        try:
            if not condition(context):
                return False
        except Exception:
            logger.warning(
                "Error evaluating binding condition for %s: %s",
                context.token,
                condition.description or condition.kind.value,
                exc_info=True,
            )
            return False
    return True


def environment_condition(*environments: str) -> BindingCondition:
    return BindingCondition(
        kind=ConditionKind.ENVIRONMENT,
        predicate=lambda ctx: (ctx.environment or DEFAULT_ENVIRONMENT) in environments,
        description=f"Environment is one of: {', '.join(environments)}",
    )


class ContextualBindingBuilder(BindingSpec[T]):
    """Fluent builder returned by ``Container.bind_contextual``.

    Example:
      (container.bind_contextual("mailer")
          .to(SmtpMailer)
          .when_environment("production")
          .with_priority(10)
          .with_fallback(Binding("mailer", factory=NullMailer))
          .build())

    """

    def __init__(self, container: Container, token: TokenLike) -> None:
        super().__init__(token, container.options.default_scope)
        self._container = container
        self._conditions: list[BindingCondition] = []
        self._priority = 0
        self._fallback: Binding | None = None

    def when(self, condition: BindingCondition | Predicate, description: str = "") -> ContextualBindingBuilder[T]:
        if not isinstance(condition, BindingCondition):
            condition = BindingCondition(ConditionKind.CUSTOM, condition, description or "Custom condition")
        self._conditions.append(condition)
        return self

    def when_environment(self, *environments: str) -> ContextualBindingBuilder[T]:
        return self.when(environment_condition(*environments))

    def when_tag(self, tag: str) -> ContextualBindingBuilder[T]:
        """Match when the binding that requested this token carries ``tag``."""
        condition = BindingCondition(
            kind=ConditionKind.TAG,
            predicate=lambda ctx: ctx.parent is not None and tag in ctx.parent.tags,
            description=f"Parent has tag: {tag}",
        )
        return self.when(condition)

    def when_parent(self, parent: TokenLike) -> ContextualBindingBuilder[T]:
        parent_token = as_token(parent)
        condition = BindingCondition(
            kind=ConditionKind.PARENT,
            predicate=lambda ctx: ctx.parent is not None and ctx.parent.token == parent_token,
            description=f"Parent token is: {parent_token}",
        )
        return self.when(condition)

    def when_request(self, predicate: Predicate) -> ContextualBindingBuilder[T]:
        return self.when(BindingCondition(ConditionKind.REQUEST, predicate, "Custom request condition"))

    def with_priority(self, priority: int) -> ContextualBindingBuilder[T]:
        self._priority = priority
        return self

    def with_fallback(self, fallback: Binding) -> ContextualBindingBuilder[T]:
        self._fallback = fallback
        return self

    def build(self) -> Container:
        binding = ContextualBinding(
            **self._binding_fields(),
            conditions=list(self._conditions),
            priority=self._priority,
            fallback=self._fallback,
        )
        return self._container.register_contextual(binding)


def sort_by_priority(bindings: list[ContextualBinding]) -> None:
    # list.sort is stable: equal priorities keep registration order.
    bindings.sort(key=lambda b: b.priority, reverse=True)
