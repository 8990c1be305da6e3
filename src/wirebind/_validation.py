from __future__ import annotations

import inspect
import typing
from typing import Any, Protocol, get_type_hints

from ._errors import InvalidBindingError


_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)


if hasattr(typing, "is_protocol"):
    # https://docs.python.org/3/library/typing.html#typing.is_protocol
    def is_protocol(tp: object) -> bool:
        return inspect.isclass(tp) and typing.is_protocol(tp)

else:

    def is_protocol(tp: object) -> bool:
        return inspect.isclass(tp) and tp is not Protocol and bool(getattr(tp, "_is_protocol", False))


def is_constructible(tp: object) -> bool:
    """Whether a class can be built ad hoc by the resolver."""
    return (
        inspect.isclass(tp)
        and getattr(tp, "__module__", "") != "builtins"
        and not inspect.isabstract(tp)
        and not is_protocol(tp)
    )


def validate_implementation(token_cls: type, impl: type) -> None:
    """Check that ``impl`` can stand in for ``token_cls``.

    Ordinary classes and ABCs need a real subclass. Protocols accept nominal
    conformance (protocol in the MRO) or structural conformance: every public
    member present, methods requiring at least as many positional parameters
    and covariant return annotations.
    """
    if not inspect.isclass(impl):
        msg = f"Implementation {impl!r} bound to {token_cls.__name__} is not a class"
        raise InvalidBindingError(msg)

    if not is_protocol(token_cls):
        if not issubclass(impl, token_cls):
            msg = f"Implementation {impl.__name__} must be a subclass of {token_cls.__name__}"
            raise InvalidBindingError(msg)
        return

    if token_cls in getattr(impl, "__mro__", ()):
        return

    problems = _structural_problems(token_cls, impl)
    if problems:
        msg = (
            f"Implementation {impl.__name__} does not structurally conform to protocol "
            f"{token_cls.__name__}: {'; '.join(problems)}"
        )
        raise InvalidBindingError(msg)


def _structural_problems(proto: type, impl: type) -> list[str]:
    try:
        annotated = get_type_hints(proto)
    except (NameError, TypeError):
        annotated = {}

    missing = [name for name in annotated if not name.startswith("_") and not hasattr(impl, name)]
    mismatches: list[str] = []

    for name, member in vars(proto).items():
        if name.startswith("_") or not inspect.isfunction(member):
            continue
        if not hasattr(impl, name):
            missing.append(name)
            continue

        candidate = getattr(impl, name)
        if not callable(candidate):
            mismatches.append(f"{name}: not callable on {impl.__name__}")
            continue

        try:
            expected = inspect.signature(member)
            actual = inspect.signature(candidate)
        except (TypeError, ValueError) as exc:
            mismatches.append(f"{name}: unable to compare signatures ({exc})")
            continue

        if _required_positional(actual) < _required_positional(expected):
            mismatches.append(
                f"{name}: impl has fewer required positional params "
                f"({_required_positional(actual)}) than protocol ({_required_positional(expected)})"
            )

        if not _returns_compatible(actual.return_annotation, expected.return_annotation):
            mismatches.append(
                f"{name}: return type {actual.return_annotation!r} is not compatible with "
                f"{expected.return_annotation!r}"
            )

    problems = []
    if missing:
        problems.append(f"missing members: {', '.join(missing)}")
    if mismatches:
        problems.append(f"signature mismatches: {', '.join(mismatches)}")
    return problems


def _required_positional(sig: inspect.Signature) -> int:
    return sum(
        1
        for p in sig.parameters.values()
        if p.name != "self" and p.kind in _POSITIONAL and p.default is inspect.Parameter.empty
    )


def _returns_compatible(actual: Any, expected: Any) -> bool:
    empty = inspect.Signature.empty
    if actual is empty or expected is empty or Any in (actual, expected):
        return True
    if actual == expected or isinstance(actual, str) or isinstance(expected, str):
        return True
    if isinstance(actual, type) and isinstance(expected, type):
        return issubclass(actual, expected)
    # Unions, TypeVars and the like: conservative failure
    return False
