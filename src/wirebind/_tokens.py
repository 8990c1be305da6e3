from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import TypeAlias, Union


@dataclass(frozen=True)
class NamedToken:
    """A token identified by a plain name, e.g. ``"logger"``."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class TypeToken:
    """A token identified by a class."""

    cls: type

    def __str__(self) -> str:
        return getattr(self.cls, "__qualname__", None) or repr(self.cls)


Token: TypeAlias = Union[NamedToken, TypeToken]
TokenLike: TypeAlias = Union[str, type, NamedToken, TypeToken]


def as_token(value: TokenLike) -> Token:
    if isinstance(value, (NamedToken, TypeToken)):
        return value
    if isinstance(value, str):
        return NamedToken(value)
    if inspect.isclass(value):
        return TypeToken(value)

    msg = f"Unsupported token {value!r}: expected a str, a class or a Token"
    raise TypeError(msg)
