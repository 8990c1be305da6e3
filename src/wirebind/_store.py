from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from ._errors import CircularDependencyError


if TYPE_CHECKING:
    from collections.abc import Callable

    from ._binding import Binding


class InstanceStore:
    """Per-container caches for singleton and scoped instances.

    Singleton construction runs under a lock owned by the binding, so two
    threads resolving the same singleton for the first time build it once.
    A thread about to block on such a lock first checks whether the owner is
    (transitively) waiting on a lock it holds itself; two threads building a
    singleton cycle from opposite ends raise ``CircularDependencyError``
    instead of blocking each other forever.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._singletons: dict[Binding, Any] = {}
        self._scoped: dict[str, dict[Binding, Any]] = {}
        self._guards: dict[Binding, threading.RLock] = {}
        # binding -> (owning thread ident, hold count)
        self._owners: dict[Binding, tuple[int, int]] = {}
        # thread ident -> binding whose guard it is blocked on
        self._waiting: dict[int, Binding] = {}

    def get_or_create_singleton(self, binding: Binding, build: Callable[[], Any]) -> Any:
        try:
            return self._singletons[binding]
        except KeyError:
            pass

        guard = self._acquire(binding)
        try:
            if binding in self._singletons:
                return self._singletons[binding]
            instance = build()
            self._singletons[binding] = instance
            return instance
        finally:
            self._release(binding, guard)

    def get_or_create_scoped(self, scope_id: str, binding: Binding, build: Callable[[], Any]) -> Any:
        with self._lock:
            instances = self._scoped.setdefault(scope_id, {})
            if binding in instances:
                return instances[binding]

        instance = build()
        with self._lock:
            # A concurrent build in the same scope keeps the first stored instance.
            return self._scoped.setdefault(scope_id, {}).setdefault(binding, instance)

    def drop_scope(self, scope_id: str) -> dict[Binding, Any]:
        with self._lock:
            return self._scoped.pop(scope_id, {})

    def evict(self, binding: Binding) -> None:
        with self._lock:
            self._singletons.pop(binding, None)
            self._guards.pop(binding, None)
            for instances in self._scoped.values():
                instances.pop(binding, None)

    def clear(self) -> None:
        with self._lock:
            self._singletons.clear()
            self._scoped.clear()
            self._guards.clear()

    def _guard(self, binding: Binding) -> threading.RLock:
        with self._lock:
            guard = self._guards.get(binding)
            if guard is None:
                guard = self._guards[binding] = threading.RLock()
            return guard

    def _acquire(self, binding: Binding) -> threading.RLock:
        me = threading.get_ident()
        guard = self._guard(binding)
        if not guard.acquire(blocking=False):
            with self._lock:
                cycle = self._wait_cycle(binding, me)
                if cycle is not None:
                    raise CircularDependencyError([str(b.token) for b in [*cycle, binding]])
                self._waiting[me] = binding
            try:
                guard.acquire()
            finally:
                with self._lock:
                    self._waiting.pop(me, None)
        with self._lock:
            _, count = self._owners.get(binding, (me, 0))
            self._owners[binding] = (me, count + 1)
        return guard

    def _release(self, binding: Binding, guard: threading.RLock) -> None:
        with self._lock:
            owner, count = self._owners[binding]
            if count > 1:
                self._owners[binding] = (owner, count - 1)
            else:
                del self._owners[binding]
        guard.release()

    def _wait_cycle(self, binding: Binding, me: int) -> list[Binding] | None:
        # Follow owner -> awaited binding -> owner until we come back to this thread.
        chain = [binding]
        seen: set[int] = set()
        current = binding
        while True:
            owner = self._owners.get(current)
            if owner is None:
                return None
            thread = owner[0]
            if thread == me:
                return chain
            if thread in seen:
                return None
            seen.add(thread)
            waited = self._waiting.get(thread)
            if waited is None:
                return None
            chain.append(waited)
            current = waited
