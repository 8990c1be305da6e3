from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any

from ._errors import DuplicateProviderError, MissingProviderDependencyError, ProviderError, ProviderLifecycleError
from ._tokens import Token, TokenLike, as_token


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from ._container import Container
    from ._contextual import ContextualBindingBuilder


logger = logging.getLogger(__name__)


class ProviderState(Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    BOOTED = "booted"
    SHUTDOWN = "shutdown"


class ServiceProvider(ABC):
    """Bundle of related bindings plus optional boot/shutdown hooks.

    ``register`` only adds bindings; ``boot`` runs once every provider has
    registered, so it may resolve services from other providers. Any hook
    can be a coroutine function.

    Example:
      class DatabaseProvider(ServiceProvider):
          name = "database"
          dependencies = ("config",)

          def register(self, container):
              container.singleton("database", Database)

          async def boot(self, container):
              await container.resolve("database").connect()

    """

    name: str
    priority: int = 0
    dependencies: Sequence[str] = ()
    environments: Sequence[str] = ()
    version: str | None = None

    @abstractmethod
    def register(self, container: Container) -> Awaitable[None] | None: ...

    def boot(self, container: Container) -> Awaitable[None] | None:
        return None

    def shutdown(self, container: Container) -> Awaitable[None] | None:
        return None

    def singleton(self, container: Container, token: TokenLike, implementation: type | None = None) -> None:
        container.singleton(token, implementation)

    def transient(self, container: Container, token: TokenLike, implementation: type | None = None) -> None:
        container.transient(token, implementation)

    def value(self, container: Container, token: TokenLike, value: Any) -> None:
        container.value(token, value)

    def factory(self, container: Container, token: TokenLike, factory: Callable[..., Any], *dependencies: Any) -> None:
        container.factory(token, factory, *dependencies)

    def for_environment(self, container: Container, token: TokenLike, *environments: str) -> ContextualBindingBuilder[Any]:
        return container.bind_contextual(token).when_environment(*environments)


class DeferredServiceProvider(ServiceProvider):
    """Provider registered only when one of the tokens it ``provides`` is first requested."""

    @abstractmethod
    def provides(self) -> Sequence[TokenLike]: ...

    def is_deferred(self) -> bool:
        return True


class ConditionalServiceProvider(ServiceProvider):
    """Provider admitted only if ``should_load`` (sync or async) returns true."""

    @abstractmethod
    def should_load(self, container: Container) -> bool | Awaitable[bool]: ...


class ProviderManager:
    """Two-phase bootstrap and reverse-order shutdown of service providers.

    ``boot()`` validates provider dependencies, then calls every ``register``,
    then every ``boot``, in descending priority (ties keep registration
    order). ``shutdown()`` ends the manager's life.
    """

    def __init__(self, container: Container) -> None:
        self._container = container
        self._providers: dict[str, Any] = {}
        self._deferred: dict[str, Any] = {}
        self._pending: list[tuple[Any, Awaitable[bool]]] = []
        self._loaded: set[str] = set()
        self._booted: set[str] = set()
        self._stopped: set[str] = set()
        self._closed = False

    @property
    def container(self) -> Container:
        return self._container

    @property
    def providers(self) -> list[Any]:
        return list(self._providers.values())

    def get_provider(self, name: str) -> Any | None:
        return self._providers.get(name)

    def state(self, name: str) -> ProviderState:
        if name in self._stopped:
            return ProviderState.SHUTDOWN
        if name in self._booted:
            return ProviderState.BOOTED
        if name in self._providers:
            return ProviderState.REGISTERED
        return ProviderState.UNREGISTERED

    def register(self, provider: Any) -> ProviderManager:
        """Add a provider; conditional providers are gated by ``should_load``.

        An async ``should_load`` is awaited at the start of ``boot()``.
        """
        self._ensure_open()

        environments = getattr(provider, "environments", ()) or ()
        if environments and self._container.environment.current not in environments:
            logger.debug("Skipping provider %s: not enabled for %s", provider.name, self._container.environment.current)
            return self

        should_load = getattr(provider, "should_load", None)
        if callable(should_load):
            decision = should_load(self._container)
            if inspect.isawaitable(decision):
                self._pending.append((provider, decision))
                return self
            if not decision:
                logger.debug("Skipping provider %s: should_load() returned false", provider.name)
                return self

        self._admit(provider)
        return self

    async def boot(self) -> None:
        self._ensure_open()
        await self._settle_pending()

        providers = sorted(
            (p for name, p in self._providers.items() if name not in self._deferred),
            key=lambda p: getattr(p, "priority", 0) or 0,
            reverse=True,
        )
        self._validate_dependencies()

        for provider in providers:
            if provider.name not in self._loaded:
                await self._load(provider)

        for provider in providers:
            if provider.name not in self._booted:
                await self._boot(provider)

        logger.info("Booted %d service provider(s)", len(providers))

    async def shutdown(self) -> list[tuple[str, Exception]]:
        """Run shutdown hooks newest-first; failures are logged and returned, never raised."""
        failures: list[tuple[str, Exception]] = []

        for provider in reversed(list(self._providers.values())):
            if provider.name in self._deferred:
                # never materialized
                continue
            hook = getattr(provider, "shutdown", None)
            if hook is not None:
                try:
                    await _maybe_await(hook(self._container))
                except Exception as exc:
                    logger.exception("Error shutting down provider %s", provider.name)
                    failures.append((provider.name, exc))
            self._stopped.add(provider.name)

        for provider in self._deferred.values():
            self._container.undefer(_provided_tokens(provider))

        self._providers.clear()
        self._deferred.clear()
        for _, decision in self._pending:
            # should_load() results that boot() never awaited
            if inspect.iscoroutine(decision):
                decision.close()
        self._pending.clear()
        self._loaded.clear()
        self._booted.clear()
        self._closed = True
        return failures

    async def load_deferred(self, token: TokenLike) -> bool:
        """Register and boot the deferred providers of ``token``; supports async hooks."""
        key = as_token(token)
        loaded = False
        for name, provider in list(self._deferred.items()):
            if key in _provided_tokens(provider) and name not in self._booted:
                if name not in self._loaded:
                    await self._load(provider)
                await self._boot(provider)
                self._finish_deferred(provider)
                loaded = True
        return loaded

    def _admit(self, provider: Any) -> None:
        name = provider.name
        if name in self._providers:
            raise DuplicateProviderError(name)

        self._providers[name] = provider
        if _is_deferred(provider):
            self._deferred[name] = provider
            self._container.defer(_provided_tokens(provider), lambda: self._materialize(provider))
            logger.debug("Registered deferred provider %s", name)
        else:
            logger.debug("Registered provider %s", name)

    async def _settle_pending(self) -> None:
        pending, self._pending = self._pending, []
        for provider, decision in pending:
            if await decision:
                self._admit(provider)
            else:
                logger.debug("Skipping provider %s: should_load() returned false", provider.name)

    def _validate_dependencies(self) -> None:
        for provider in self._providers.values():
            for dependency in getattr(provider, "dependencies", ()) or ():
                if dependency not in self._providers:
                    raise MissingProviderDependencyError(provider.name, dependency)

    async def _load(self, provider: Any) -> None:
        try:
            await _maybe_await(provider.register(self._container))
        except Exception as exc:
            raise ProviderLifecycleError(provider.name, "register", exc) from exc
        self._loaded.add(provider.name)
        logger.debug("Loaded provider %s", provider.name)

    async def _boot(self, provider: Any) -> None:
        boot = getattr(provider, "boot", None)
        if boot is not None:
            try:
                await _maybe_await(boot(self._container))
            except Exception as exc:
                raise ProviderLifecycleError(provider.name, "boot", exc) from exc
        self._booted.add(provider.name)
        logger.debug("Booted provider %s", provider.name)

    def _materialize(self, provider: Any) -> None:
        """Synchronous deferred loading, triggered from ``Container.resolve``."""
        if provider.name in self._booted:
            return
        if provider.name not in self._loaded:
            self._call_sync(provider, "register", provider.register)
            self._loaded.add(provider.name)

        boot = getattr(provider, "boot", None)
        if boot is not None:
            self._call_sync(provider, "boot", boot)
        self._booted.add(provider.name)
        self._finish_deferred(provider)
        logger.debug("Materialized deferred provider %s", provider.name)

    def _call_sync(self, provider: Any, phase: str, hook: Callable[[Container], Any]) -> None:
        try:
            result = hook(self._container)
        except Exception as exc:
            raise ProviderLifecycleError(provider.name, phase, exc) from exc

        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            msg = "async hook cannot run during synchronous resolution; await ProviderManager.load_deferred() first"
            raise ProviderLifecycleError(provider.name, phase, msg)

    def _finish_deferred(self, provider: Any) -> None:
        self._deferred.pop(provider.name, None)
        self._container.undefer(_provided_tokens(provider))

    def _ensure_open(self) -> None:
        if self._closed:
            msg = "ProviderManager has been shut down"
            raise ProviderError(msg)


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


def _is_deferred(provider: Any) -> bool:
    if not callable(getattr(provider, "provides", None)):
        return False
    is_deferred = getattr(provider, "is_deferred", None)
    return bool(is_deferred()) if callable(is_deferred) else True


def _provided_tokens(provider: Any) -> list[Token]:
    return [as_token(t) for t in provider.provides()]
