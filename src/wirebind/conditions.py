"""Ready-made conditions for contextual bindings.

Example:
  from wirebind import conditions

  container.bind_contextual("cache").to(RedisCache).when(conditions.feature("redis")).build()

"""

from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ._contextual import BindingCondition, ConditionKind, environment_condition


if TYPE_CHECKING:
    from collections.abc import Callable

    from ._context import ResolutionContext


__all__ = ["custom", "env_var", "environment", "feature", "request_pattern", "time_range"]


def environment(*environments: str) -> BindingCondition:
    return environment_condition(*environments)


def feature(name: str) -> BindingCondition:
    return BindingCondition(
        kind=ConditionKind.CUSTOM,
        predicate=lambda ctx: ctx.container.environment.has_feature(name),
        description=f"Feature {name} is enabled",
    )


def env_var(key: str, value: Any) -> BindingCondition:
    return BindingCondition(
        kind=ConditionKind.CUSTOM,
        predicate=lambda ctx: ctx.container.environment.get(key) == value,
        description=f"Environment variable {key} equals {value!r}",
    )


def request_pattern(pattern: str | re.Pattern[str]) -> BindingCondition:
    compiled = re.compile(pattern)
    return BindingCondition(
        kind=ConditionKind.REQUEST,
        predicate=lambda ctx: compiled.search(ctx.request_id or "") is not None,
        description=f"Request ID matches pattern: {compiled.pattern}",
    )


def time_range(start_hour: int, end_hour: int, *, clock: Callable[[], datetime] = datetime.now) -> BindingCondition:
    """Inclusive hour window, e.g. ``time_range(9, 17)``."""
    return BindingCondition(
        kind=ConditionKind.CUSTOM,
        predicate=lambda _: start_hour <= clock().hour <= end_hour,
        description=f"Time is between {start_hour}:00 and {end_hour}:00",
    )


def custom(predicate: Callable[[ResolutionContext], bool], description: str = "Custom condition") -> BindingCondition:
    return BindingCondition(kind=ConditionKind.CUSTOM, predicate=predicate, description=description)
