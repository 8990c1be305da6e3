import unittest

from wirebind import Container


class TestResolutionPrecedence(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_resolve_uses_type_annotation_when_named_factory_exists(self):
        class DB: ...

        class AnotherDB: ...

        class Repo:
            def __init__(self, db: DB):
                self.db = db

        # Bound by name
        self.cont.factory("db", AnotherDB)

        obj = self.cont.resolve(Repo)

        # Type hint wins over the parameter name
        assert isinstance(obj.db, DB)
        assert not isinstance(obj.db, AnotherDB)

    def test_resolve_uses_type_annotation_when_named_instance_exists(self):
        class DB: ...

        class AnotherDB: ...

        class Repo:
            def __init__(self, db: DB):
                self.db = db

        self.cont.instance("db", AnotherDB())
        obj = self.cont.resolve(Repo)

        assert isinstance(obj.db, DB)
        assert not isinstance(obj.db, AnotherDB)

    def test_resolve_falls_back_to_name_when_annotation_is_not_resolvable(self):
        from typing import Protocol

        class Storage(Protocol):
            def put(self, key: str) -> None: ...

        class Disk:
            def put(self, key: str) -> None:
                pass

        class Repo:
            def __init__(self, storage: Storage):
                self.storage = storage

        self.cont.instance("storage", Disk())
        obj = self.cont.resolve(Repo)

        assert isinstance(obj.storage, Disk)

    def test_resolve_uses_override_argument_when_type_annotation_exists(self):
        class DB: ...

        class Repo:
            def __init__(self, db: DB):
                self.db = db

        override_db = DB()
        obj = self.cont.resolve(Repo, db=override_db)
        assert obj.db is override_db

    def test_resolve_uses_override_argument_when_named_binding_exists(self):
        class DB: ...

        class Repo:
            def __init__(self, db):
                self.db = db

        self.cont.instance("db", DB())
        override_db = DB()
        obj = self.cont.resolve(Repo, db=override_db)
        assert obj.db is override_db

    def test_resolve_prefers_named_binding_over_default_value(self):
        class WithDefault:
            def __init__(self, port: int = 5555):
                self.port = port

        self.cont.value("port", 1234)
        obj = self.cont.resolve(WithDefault)
        assert obj.port == 1234

    def test_contextual_binding_wins_over_plain_binding(self):
        self.cont.value("mode", "plain")
        self.cont.bind_contextual("mode").to_value("contextual").when(lambda ctx: True).build()

        assert self.cont.resolve("mode") == "contextual"

    def test_plain_binding_used_when_no_contextual_condition_matches(self):
        self.cont.value("mode", "plain")
        self.cont.bind_contextual("mode").to_value("contextual").when(lambda ctx: False).build()

        assert self.cont.resolve("mode") == "plain"

    def test_local_binding_wins_over_parent_binding(self):
        self.cont.value("mode", "parent")
        child = self.cont.create_child()
        child.value("mode", "child")

        assert child.resolve("mode") == "child"
