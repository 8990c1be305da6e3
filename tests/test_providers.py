import asyncio
import inspect
import logging
import unittest

import pytest

from wirebind import (
    ConditionalServiceProvider,
    Container,
    DeferredServiceProvider,
    DuplicateProviderError,
    EnvironmentManager,
    MissingProviderDependencyError,
    ProviderError,
    ProviderLifecycleError,
    ProviderManager,
    ProviderState,
    ServiceProvider,
)


class RecordingProvider(ServiceProvider):
    def __init__(self, name, journal, *, priority=0, dependencies=()):
        self.name = name
        self.priority = priority
        self.dependencies = dependencies
        self.journal = journal

    def register(self, container):
        self.journal.append(("register", self.name))
        container.value(self.name, f"{self.name}-service")

    def boot(self, container):
        self.journal.append(("boot", self.name))

    def shutdown(self, container):
        self.journal.append(("shutdown", self.name))


class Mailer: ...


class MailProvider(DeferredServiceProvider):
    name = "mail"

    def __init__(self):
        self.booted = False

    def provides(self):
        return ["mailer"]

    def register(self, container):
        container.singleton("mailer", Mailer)

    def boot(self, container):
        self.booted = True


class AsyncMailProvider(DeferredServiceProvider):
    name = "async-mail"

    def provides(self):
        return ["mailer"]

    async def register(self, container):
        await asyncio.sleep(0)
        container.singleton("mailer", Mailer)


def make_manager(environment="development"):
    container = Container(environment=EnvironmentManager.with_presets(environ={"APP_ENV": environment}))
    return ProviderManager(container)


class TestBootSequence(unittest.TestCase):
    manager: ProviderManager

    def setUp(self):
        self.manager = make_manager()
        self.journal = []

    def test_register_phase_completes_before_boot_phase(self):
        self.manager.register(RecordingProvider("a", self.journal))
        self.manager.register(RecordingProvider("b", self.journal))

        asyncio.run(self.manager.boot())

        assert self.journal == [("register", "a"), ("register", "b"), ("boot", "a"), ("boot", "b")]
        assert self.manager.container.resolve("b") == "b-service"

    def test_providers_ordered_by_descending_priority(self):
        self.manager.register(RecordingProvider("low", self.journal, priority=1))
        self.manager.register(RecordingProvider("high", self.journal, priority=10))
        self.manager.register(RecordingProvider("mid", self.journal, priority=5))
        self.manager.register(RecordingProvider("mid2", self.journal, priority=5))

        asyncio.run(self.manager.boot())

        registered = [name for phase, name in self.journal if phase == "register"]
        assert registered == ["high", "mid", "mid2", "low"]

    def test_missing_dependency_fails_before_any_register(self):
        self.manager.register(RecordingProvider("b", self.journal, dependencies=("a",)))

        with pytest.raises(MissingProviderDependencyError) as ctx:
            asyncio.run(self.manager.boot())

        assert ctx.value.provider == "b"
        assert ctx.value.dependency == "a"
        assert self.journal == []

    def test_satisfied_dependency(self):
        self.manager.register(RecordingProvider("a", self.journal))
        self.manager.register(RecordingProvider("b", self.journal, dependencies=("a",)))

        asyncio.run(self.manager.boot())

        assert self.manager.state("a") is ProviderState.BOOTED
        assert self.manager.state("b") is ProviderState.BOOTED

    def test_duplicate_provider_rejected(self):
        self.manager.register(RecordingProvider("a", self.journal))

        with pytest.raises(DuplicateProviderError):
            self.manager.register(RecordingProvider("a", self.journal))

    def test_boot_is_idempotent(self):
        self.manager.register(RecordingProvider("a", self.journal))

        asyncio.run(self.manager.boot())
        asyncio.run(self.manager.boot())

        assert self.journal == [("register", "a"), ("boot", "a")]

    def test_register_failure_is_wrapped(self):
        class Failing(ServiceProvider):
            name = "failing"

            def register(self, container):
                msg = "bad config"
                raise KeyError(msg)

        self.manager.register(Failing())

        with pytest.raises(ProviderLifecycleError) as ctx:
            asyncio.run(self.manager.boot())

        assert ctx.value.provider == "failing"
        assert ctx.value.phase == "register"
        assert isinstance(ctx.value.__cause__, KeyError)
        assert "Failed to register provider 'failing'" in str(ctx.value)

    def test_async_boot_failure_is_wrapped(self):
        class Failing(ServiceProvider):
            name = "failing"

            def register(self, container):
                pass

            async def boot(self, container):
                msg = "connection refused"
                raise ConnectionError(msg)

        self.manager.register(Failing())

        with pytest.raises(ProviderLifecycleError) as ctx:
            asyncio.run(self.manager.boot())

        assert ctx.value.phase == "boot"
        assert isinstance(ctx.value.__cause__, ConnectionError)
        assert self.manager.state("failing") is ProviderState.REGISTERED

    def test_async_hooks(self):
        journal = self.journal

        class AsyncProvider(ServiceProvider):
            name = "async"

            async def register(self, container):
                await asyncio.sleep(0)
                container.value("async", 1)

            async def boot(self, container):
                journal.append(container.resolve("async"))

        self.manager.register(AsyncProvider())
        asyncio.run(self.manager.boot())

        assert journal == [1]

    def test_duck_typed_provider(self):
        class Plain:
            name = "plain"

            def register(self, container):
                container.value("plain", True)

        self.manager.register(Plain())
        asyncio.run(self.manager.boot())

        assert self.manager.container.resolve("plain") is True
        assert self.manager.get_provider("plain") is not None


class TestProviderGates(unittest.TestCase):
    def test_environment_gate(self):
        class ProductionOnly(ServiceProvider):
            name = "prod"
            environments = ("production",)

            def register(self, container):
                container.value("prod", True)

        dev = make_manager("development")
        dev.register(ProductionOnly())
        assert dev.get_provider("prod") is None

        prod = make_manager("production")
        prod.register(ProductionOnly())
        asyncio.run(prod.boot())
        assert prod.container.resolve("prod") is True

    def test_sync_should_load(self):
        class Feature(ConditionalServiceProvider):
            name = "feature"

            def __init__(self, enabled):
                self.enabled = enabled

            def should_load(self, container):
                return self.enabled

            def register(self, container):
                container.value("feature", True)

        manager = make_manager()
        manager.register(Feature(False))
        assert manager.providers == []

        manager.register(Feature(True))
        asyncio.run(manager.boot())
        assert manager.container.resolve("feature") is True

    def test_async_should_load_resolved_at_boot(self):
        class AsyncFeature(ConditionalServiceProvider):
            name = "feature"

            def __init__(self, enabled):
                self.enabled = enabled

            async def should_load(self, container):
                await asyncio.sleep(0)
                return self.enabled

            def register(self, container):
                container.value("feature", self.enabled)

        skipped = make_manager()
        skipped.register(AsyncFeature(False))
        asyncio.run(skipped.boot())
        assert skipped.get_provider("feature") is None

        loaded = make_manager()
        loaded.register(AsyncFeature(True))
        assert loaded.state("feature") is ProviderState.UNREGISTERED
        asyncio.run(loaded.boot())
        assert loaded.state("feature") is ProviderState.BOOTED
        assert loaded.container.resolve("feature") is True

    def test_shutdown_before_boot_closes_pending_should_load(self):
        decisions = []

        class AsyncFeature(ConditionalServiceProvider):
            name = "feature"

            def should_load(self, container):
                decision = self.check_flag()
                decisions.append(decision)
                return decision

            async def check_flag(self):
                return True

            def register(self, container):
                container.value("feature", True)

        manager = make_manager()
        manager.register(AsyncFeature())
        asyncio.run(manager.shutdown())

        assert inspect.getcoroutinestate(decisions[0]) == inspect.CORO_CLOSED
        assert manager.get_provider("feature") is None

    def test_for_environment_helper(self):
        class CacheProvider(ServiceProvider):
            name = "cache"

            def register(self, container):
                self.for_environment(container, "cache", "production").to_value("redis").build()
                self.for_environment(container, "cache", "development", "test").to_value("memory").build()

        manager = make_manager("production")
        manager.register(CacheProvider())
        asyncio.run(manager.boot())

        assert manager.container.resolve("cache") == "redis"
        assert manager.container.resolve("cache", environment="test") == "memory"

    def test_registration_helpers(self):
        class Clock: ...

        class Helpers(ServiceProvider):
            name = "helpers"

            def register(self, container):
                self.singleton(container, Clock)
                self.transient(container, "clock.fresh", Clock)
                self.value(container, "tz", "UTC")
                self.factory(container, "greeting", lambda tz: f"hello {tz}", "tz")

        manager = make_manager()
        manager.register(Helpers())
        asyncio.run(manager.boot())
        c = manager.container

        assert c.resolve(Clock) is c.resolve(Clock)
        assert c.resolve("clock.fresh") is not c.resolve("clock.fresh")
        assert c.resolve("greeting") == "hello UTC"


class TestDeferredProviders(unittest.TestCase):
    def test_deferred_provider_not_loaded_at_boot(self):
        manager = make_manager()
        provider = MailProvider()
        manager.register(provider)
        asyncio.run(manager.boot())

        assert manager.state("mail") is ProviderState.REGISTERED
        assert not provider.booted

    def test_first_resolution_materializes_deferred_provider(self):
        manager = make_manager()
        provider = MailProvider()
        manager.register(provider)
        asyncio.run(manager.boot())

        mailer = manager.container.resolve("mailer")

        assert isinstance(mailer, Mailer)
        assert provider.booted
        assert manager.state("mail") is ProviderState.BOOTED
        assert manager.container.resolve("mailer") is mailer

    def test_deferred_tokens_count_as_bound(self):
        manager = make_manager()
        manager.register(MailProvider())

        assert manager.container.is_bound("mailer")

    def test_load_deferred_supports_async_hooks(self):
        manager = make_manager()
        manager.register(AsyncMailProvider())

        assert asyncio.run(manager.load_deferred("mailer"))
        assert isinstance(manager.container.resolve("mailer"), Mailer)
        assert not asyncio.run(manager.load_deferred("mailer"))

    def test_sync_resolution_of_async_deferred_provider_raises(self):
        manager = make_manager()
        manager.register(AsyncMailProvider())

        with pytest.raises(ProviderLifecycleError) as ctx:
            manager.container.resolve("mailer")
        assert "load_deferred" in str(ctx.value)

    def test_failed_sync_load_keeps_token_deferred(self):
        manager = make_manager()
        manager.register(AsyncMailProvider())

        for _ in range(2):
            with pytest.raises(ProviderLifecycleError):
                manager.container.resolve("mailer")

        assert manager.container.is_bound("mailer")
        assert asyncio.run(manager.load_deferred("mailer"))
        assert isinstance(manager.container.resolve("mailer"), Mailer)

    def test_failed_deferred_boot_is_retried_on_next_resolve(self):
        attempts = []

        class FlakyMailProvider(MailProvider):
            def boot(self, container):
                attempts.append("boot")
                if len(attempts) == 1:
                    msg = "smtp unreachable"
                    raise ConnectionError(msg)
                super().boot(container)

        manager = make_manager()
        provider = FlakyMailProvider()
        manager.register(provider)

        with pytest.raises(ProviderLifecycleError) as ctx:
            manager.container.resolve("mailer")
        assert ctx.value.phase == "boot"

        assert isinstance(manager.container.resolve("mailer"), Mailer)
        assert provider.booted
        assert attempts == ["boot", "boot"]
        assert manager.state("mail") is ProviderState.BOOTED

    def test_unloaded_deferred_provider_skipped_at_shutdown(self):
        calls = []

        class Deferred(MailProvider):
            def shutdown(self, container):
                calls.append("shutdown")

        manager = make_manager()
        manager.register(Deferred())
        asyncio.run(manager.boot())
        asyncio.run(manager.shutdown())

        assert calls == []


class TestShutdown(unittest.TestCase):
    manager: ProviderManager

    def setUp(self):
        self.manager = make_manager()
        self.journal = []

    def test_shutdown_in_reverse_registration_order(self):
        for name in ("A", "B", "C"):
            self.manager.register(RecordingProvider(name, self.journal))
        asyncio.run(self.manager.boot())
        self.journal.clear()

        failures = asyncio.run(self.manager.shutdown())

        assert failures == []
        assert self.journal == [("shutdown", "C"), ("shutdown", "B"), ("shutdown", "A")]

    def test_shutdown_failure_is_isolated_and_reported(self):
        journal = self.journal

        class Faulty(ServiceProvider):
            name = "B"

            def register(self, container):
                pass

            async def shutdown(self, container):
                msg = "already closed"
                raise RuntimeError(msg)

        self.manager.register(RecordingProvider("A", journal))
        self.manager.register(Faulty())
        self.manager.register(RecordingProvider("C", journal))
        asyncio.run(self.manager.boot())
        journal.clear()

        with self.assertLogs("wirebind._providers", level=logging.ERROR):
            failures = asyncio.run(self.manager.shutdown())

        assert journal == [("shutdown", "C"), ("shutdown", "A")]
        assert [name for name, _ in failures] == ["B"]
        assert isinstance(failures[0][1], RuntimeError)

    def test_manager_unusable_after_shutdown(self):
        self.manager.register(RecordingProvider("A", self.journal))
        asyncio.run(self.manager.boot())
        asyncio.run(self.manager.shutdown())

        assert self.manager.state("A") is ProviderState.SHUTDOWN
        assert self.manager.providers == []
        with pytest.raises(ProviderError):
            self.manager.register(RecordingProvider("D", self.journal))
        with pytest.raises(ProviderError):
            asyncio.run(self.manager.boot())
