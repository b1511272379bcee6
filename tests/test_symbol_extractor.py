from __future__ import annotations

import pytest

from thoth.exceptions import SymbolParseError, SymbolResolutionError
from thoth.symbols import default_registry, extract_file, extract_snapshot
from thoth.symbols.extractor import extract_file_safe, module_name, package_name
from tests.thoth_helpers import USER_SERVICE_GO_V1

PY_SOURCE = b"""\
class UserService:
    def get(self, user_id):
        return user_id


@route("/")
def index():
    return "ok"
"""


def test_module_and_package_names() -> None:
    assert module_name("src/app/users.py") == "app.users"
    assert module_name("app/__init__.py") == "app"
    assert module_name("tool.py") == "tool"
    assert package_name("pkg/api/service.go") == "pkg/api"
    assert package_name("main.go") == ""


def test_python_fqnames_follow_module_template() -> None:
    symbols = extract_file(PY_SOURCE, file_path="app/users.py", lang="python", registry=default_registry())
    assert [(symbol.fqname, symbol.kind) for symbol in symbols] == [
        ("app.users.UserService", "class"),
        ("app.users.UserService.get", "method"),
        ("app.users.index", "function"),
    ]
    assert all(symbol.query is None for symbol in symbols)
    assert all(len(symbol.body_hash) == 64 for symbol in symbols)


def test_go_fqnames_follow_package_template() -> None:
    symbols = extract_file(
        USER_SERVICE_GO_V1.encode(),
        file_path="pkg/api/service.go",
        lang="go",
        registry=default_registry(),
    )
    assert [symbol.fqname for symbol in symbols] == [
        "pkg/api.UserService",
        "pkg/api.UserService.Get",
        "pkg/api.unrelated",
    ]


def test_custom_query_symbols_are_namespaced() -> None:
    symbols = extract_file(
        PY_SOURCE,
        file_path="app/users.py",
        lang="python",
        registry=default_registry(),
        queries=["kind=function decorator=route"],
    )
    tagged = [symbol for symbol in symbols if symbol.query is not None]
    assert [(symbol.fqname, symbol.query) for symbol in tagged] == [
        ("app.users.index", "kind=function decorator=route")
    ]
    assert len(symbols) == 4


def test_extraction_is_pure() -> None:
    registry = default_registry()
    first = extract_file(PY_SOURCE, file_path="app/users.py", lang="python", registry=registry)
    second = extract_file(PY_SOURCE, file_path="app/users.py", lang="python", registry=registry)
    assert first == second


def test_fqn_collision_inside_one_file() -> None:
    source = b"def a():\n    pass\n\n\ndef a():\n    pass\n"
    with pytest.raises(SymbolResolutionError) as excinfo:
        extract_file(source, file_path="m.py", lang="python", registry=default_registry())
    assert excinfo.value.fqname == "m.a"


def test_property_accessors_and_overloads_get_ordinal_fqnames() -> None:
    source = b"""\
from typing import overload


class UserService:
    @property
    def name(self):
        return self._name

    @name.setter
    def name(self, value):
        self._name = value


@overload
def parse(value: int) -> int: ...
@overload
def parse(value: str) -> str: ...
def parse(value):
    return value
"""
    symbols = extract_file(source, file_path="app/users.py", lang="python", registry=default_registry())
    assert [symbol.fqname for symbol in symbols] == [
        "app.users.UserService",
        "app.users.UserService.name",
        "app.users.UserService.name#2",
        "app.users.parse",
        "app.users.parse#2",
        "app.users.parse#3",
    ]
    assert {symbol.name for symbol in symbols if symbol.kind != "class"} == {"name", "parse"}


def test_repeated_go_init_funcs_get_ordinal_fqnames() -> None:
    source = b"package x\n\nfunc init() {\n}\n\nfunc init() {\n\tsetup()\n}\n"
    symbols = extract_file(source, file_path="pkg/x/boot.go", lang="go", registry=default_registry())
    assert [(symbol.fqname, symbol.start_line) for symbol in symbols] == [
        ("pkg/x.init", 3),
        ("pkg/x.init#2", 6),
    ]


def test_plain_redefinition_after_property_is_still_a_collision() -> None:
    source = b"class C:\n    @property\n    def name(self):\n        return 1\n\n    def name(self):\n        return 2\n"
    with pytest.raises(SymbolResolutionError) as excinfo:
        extract_file(source, file_path="m.py", lang="python", registry=default_registry())
    assert excinfo.value.fqname == "m.C.name"
    go_source = b"package x\n\nfunc helper() {\n}\n\nfunc helper() {\n}\n"
    result = extract_file_safe(go_source, file_path="pkg/x/h.go", lang="go", registry=default_registry())
    assert isinstance(result.error, SymbolResolutionError)
    assert result.symbols == ()


def test_parse_errors_carry_file_path() -> None:
    with pytest.raises(SymbolParseError) as excinfo:
        extract_file(b"def (:\n", file_path="bad.py", lang="python", registry=default_registry())
    assert excinfo.value.file_path == "bad.py"
    result = extract_file_safe(b"def (:\n", file_path="bad.py", lang="python", registry=default_registry())
    assert result.symbols == ()
    assert isinstance(result.error, SymbolParseError)


def test_snapshot_fqn_collision_is_reported_per_file() -> None:
    snapshot = extract_snapshot(
        {
            "src/app/users.py": (b"def a():\n    pass\n", "python"),
            "app/users.py": (b"def a():\n    pass\n", "python"),
            "other.py": (b"def b():\n    pass\n", "python"),
        },
        registry=default_registry(),
    )
    assert [symbol.fqname for symbol in snapshot.symbols] == ["app.users.a", "other.b"]
    error = snapshot.error_for("src/app/users.py")
    assert isinstance(error, SymbolResolutionError)
    assert snapshot.error_for("app/users.py") is None
    assert [symbol.file_path for symbol in snapshot.for_file("other.py")] == ["other.py"]
