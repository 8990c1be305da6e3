import pytest

from wirebind import NamedToken, TypeToken, as_token


class Database: ...


def test_string_becomes_named_token():
    assert as_token("db") == NamedToken("db")


def test_class_becomes_type_token():
    assert as_token(Database) == TypeToken(Database)


def test_tokens_pass_through():
    token = NamedToken("db")
    assert as_token(token) is token


def test_named_and_type_tokens_never_compare_equal():
    assert NamedToken("Database") != TypeToken(Database)
    assert len({NamedToken("Database"), TypeToken(Database)}) == 2


def test_display_form():
    assert str(NamedToken("db")) == "db"
    assert str(TypeToken(Database)) == "Database"


def test_unsupported_token_raises_type_error():
    with pytest.raises(TypeError):
        as_token(42)
