from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Sequence

    from ._tokens import Token


class ResolutionError(RuntimeError):
    """Base class for every failure raised while resolving a token."""


class UnresolvedTokenError(ResolutionError):
    def __init__(self, token: Token, reason: str = "") -> None:
        self.token = token
        msg = f"No binding found for: {token}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class CircularDependencyError(ResolutionError):
    def __init__(self, chain: Sequence[str]) -> None:
        self.chain = list(chain)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.chain)}")


class MaxDepthExceededError(ResolutionError):
    def __init__(self, chain: Sequence[str], max_depth: int) -> None:
        self.chain = list(chain)
        self.max_depth = max_depth
        lines = "\n".join(f"  {i}. {name}" for i, name in enumerate(self.chain, start=1))
        msg = (
            f"Maximum resolution depth exceeded ({max_depth}).\n"
            "This usually indicates a circular or very deep dependency chain.\n"
            f"Current resolution chain:\n{lines}"
        )
        super().__init__(msg)


class ContextualConditionUnmetError(ResolutionError):
    def __init__(self, token: Token) -> None:
        self.token = token
        super().__init__(f"Contextual binding condition not met for: {token}")


class InvalidBindingError(ValueError):
    pass


class UnknownEnvironmentError(ValueError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Environment {name!r} is not registered")


class ProviderError(RuntimeError):
    """Base class for service provider lifecycle failures."""


class DuplicateProviderError(ProviderError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Provider {name!r} is already registered")


class MissingProviderDependencyError(ProviderError):
    def __init__(self, provider: str, dependency: str) -> None:
        self.provider = provider
        self.dependency = dependency
        super().__init__(f"Provider {provider!r} depends on {dependency!r}, but it's not registered")


class ProviderLifecycleError(ProviderError):
    """A provider's ``register`` or ``boot`` hook failed; the cause is chained."""

    def __init__(self, provider: str, phase: str, cause: BaseException | str) -> None:
        self.provider = provider
        self.phase = phase
        super().__init__(f"Failed to {phase} provider {provider!r}: {cause}")
