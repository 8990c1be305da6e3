from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from ._binding import Binding
    from ._container import Container
    from ._tokens import Token


@dataclass
class ResolutionContext:
    """State of one frame of a resolution.

    ``resolving`` is shared by every frame of a single top-level ``resolve``
    call and holds the tokens currently under construction, in order. It is
    the cycle detector; ``depth`` bounds the nesting.
    """

    container: Container
    token: Token
    parent: ResolutionContext | None = None
    environment: str | None = None
    request_id: str | None = None
    depth: int = 0
    resolving: dict[Token, None] = field(default_factory=dict)
    binding: Binding | None = None

    def child(self, token: Token, container: Container | None = None) -> ResolutionContext:
        """Frame for resolving one of this frame's dependencies."""
        return replace(
            self,
            container=container or self.container,
            token=token,
            parent=self,
            depth=self.depth + 1,
            binding=None,
        )

    def fresh(self, container: Container) -> ResolutionContext:
        """Frame for delegating this token to a parent container.

        Cycle detection restarts there: a token missing in a child is not
        in progress in the parent.
        """
        return ResolutionContext(
            container=container,
            token=self.token,
            parent=self.parent,
            environment=self.environment,
            request_id=self.request_id,
        )

    def chain(self, token: Token | None = None) -> list[str]:
        names = [str(t) for t in self.resolving]
        if token is not None:
            names.append(str(token))
        return names

    @property
    def tags(self) -> tuple[str, ...]:
        return self.binding.tags if self.binding is not None else ()
