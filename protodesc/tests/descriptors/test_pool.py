"""Tests for the descriptor pool lifecycle."""

import pytest

from protodesc.compiler import DiagnosticKind
from protodesc.descriptors.pool import (
    DescriptorPool,
    HandleKindError,
    PoolStateError,
    StaleHandleError,
    reinit_descriptor_pool,
)
from protodesc.descriptors.types import HandleKind


def describe_load_file():
    def loads_and_finalizes_implicitly(expect, write_protos):
        root = write_protos({"a.proto": "message Foo { optional int32 x = 1; }"})
        pool = DescriptorPool()

        expect(pool.load_file(root / "a.proto")) == True
        expect(pool.finalized) == False

        handle = pool.find_message_by_name("Foo")
        expect(pool.finalized) == True
        expect(handle.kind) == HandleKind.MESSAGE
        expect(pool.message(handle).full_name) == "Foo"

    def reports_syntax_errors_and_drops_the_file(expect, write_protos):
        errors = []
        root = write_protos(
            {
                "bad.proto": "message Bad {\n  optional int32 = 1;\n}",
                "good.proto": "message Good { optional int32 x = 1; }",
            }
        )
        pool = DescriptorPool(error_cb=errors.append)

        expect(pool.load_file(root / "bad.proto")) == False
        expect(pool.load_file(root / "good.proto")) == True

        expect(len(errors)) == 1
        expect(errors[0].startswith("bad.proto:2:")) == True
        expect(pool.diagnostics[0].kind) == DiagnosticKind.SYNTAX
        expect(pool.find_message_by_name("Bad")) == None
        expect(pool.find_message_by_name("Good") is not None) == True

    def reports_lexical_errors(expect, write_protos):
        errors = []
        root = write_protos({"bad.proto": "message Bad { optional int32 x = 1; } $"})
        pool = DescriptorPool(error_cb=errors.append)

        expect(pool.load_file(root / "bad.proto")) == False
        expect(pool.diagnostics[0].kind) == DiagnosticKind.LEXICAL
        expect(pool.diagnostics[0].column) == 39

    def reports_unreadable_files(expect, tmp_path):
        errors = []
        pool = DescriptorPool(error_cb=errors.append)

        expect(pool.load_file(tmp_path / "missing.proto")) == False
        expect(pool.diagnostics[0].kind) == DiagnosticKind.IO
        expect(len(errors)) == 1

    def skips_files_already_loaded(expect, write_protos):
        errors = []
        root = write_protos({"a.proto": "message Foo {}"})
        pool = DescriptorPool([root], error_cb=errors.append)

        expect(pool.load_file(root / "a.proto")) == True
        expect(errors) == []
        expect(sum(1 for _ in pool.messages())) == 1

    def refuses_to_load_after_finalize(write_protos):
        root = write_protos({"a.proto": "message Foo {}"})
        pool = DescriptorPool()
        pool.finalize()

        with pytest.raises(PoolStateError):
            pool.load_file(root / "a.proto")


def describe_load_directories():
    def loads_every_schema_file_recursively(expect, write_protos):
        root = write_protos(
            {
                "a.proto": "package a; message A {}",
                "sub/b.proto": "package b; message B {}",
                "sub/deeper/c.proto": "package c; message C {}",
                "notes.txt": "not a schema",
            }
        )
        pool = DescriptorPool([root])

        expect(pool.diagnostics) == []
        expect(sorted(pool.message(h).full_name for h in pool.messages())) == ["a.A", "b.B", "c.C"]
        expect(pool.message(pool.find_message_by_name("b.B")).file) == "sub/b.proto"

    def reports_missing_directories(expect, tmp_path):
        errors = []
        pool = DescriptorPool([tmp_path / "nope"], error_cb=errors.append)

        expect(len(errors)) == 1
        expect(pool.diagnostics[0].kind) == DiagnosticKind.IO
        expect(pool.find_message_by_name("Anything")) == None

    def yields_an_empty_pool_when_nothing_loads(expect, write_protos):
        root = write_protos({"broken.proto": "message {"})
        pool = DescriptorPool([root], error_cb=lambda _message: None)

        expect(pool.for_each_message(lambda _handle: None)) == 0


def describe_finalize():
    def resolves_types_across_files(expect, write_protos):
        root = write_protos(
            {
                "one.proto": 'import "two.proto"; message A { optional B b = 1; }',
                "two.proto": "message B { optional int32 x = 1; }",
            }
        )
        pool = DescriptorPool([root])

        a = pool.message(pool.find_message_by_name("A"))
        field = pool.field(pool.handle(HandleKind.FIELD, a.fields[0]))
        expect(field.message_type) == pool.find_message_by_name("B").index

    def loads_missing_imports_from_the_search_path(expect, write_protos):
        lib = write_protos({"common/types.proto": "package common; message Id {}"}, root="lib")
        app = write_protos(
            {
                "app.proto": """
                import "common/types.proto";
                message App { optional common.Id id = 1; }
                """
            },
            root="app",
        )
        pool = DescriptorPool()
        pool.directories.append(lib)
        pool.load_file(app / "app.proto")
        pool.finalize()

        expect(pool.diagnostics) == []
        common_id = pool.find_message_by_name("common.Id")
        expect(pool.message(common_id).file) == "common/types.proto"

    def loads_imports_next_to_the_importing_file(expect, write_protos):
        root = write_protos(
            {
                "main.proto": 'import "dep.proto"; message Main { optional Dep d = 1; }',
                "dep.proto": "message Dep {}",
            }
        )
        pool = DescriptorPool()
        pool.load_file(root / "main.proto")

        expect(pool.find_message_by_name("Dep") is not None) == True
        expect(pool.diagnostics) == []

    def reports_imports_that_cannot_be_found(expect, write_protos):
        errors = []
        root = write_protos({"a.proto": 'import "gone.proto";\nmessage A {}'})
        pool = DescriptorPool([root], error_cb=errors.append)
        pool.finalize()

        expect(errors) == ["a.proto:1:8: io error: Import 'gone.proto' was not found"]

    def is_idempotent(expect, write_protos):
        errors = []
        root = write_protos({"a.proto": "message A { optional Missing m = 1; }"})
        pool = DescriptorPool([root], error_cb=errors.append)
        pool.finalize()
        pool.finalize()

        expect(len(errors)) == 1


def describe_lookups():
    def finds_messages_enums_and_methods_by_full_name(expect, write_protos):
        root = write_protos(
            {
                "a.proto": """
                package pkg;
                message Req { enum Kind { A = 0; } }
                service Svc { rpc Get (Req) returns (Req); }
                """
            }
        )
        pool = DescriptorPool([root])

        expect(pool.find_message_by_name("pkg.Req").kind) == HandleKind.MESSAGE
        expect(pool.find_message_by_name(".pkg.Req").kind) == HandleKind.MESSAGE
        expect(pool.find_enum_by_name("pkg.Req.Kind").kind) == HandleKind.ENUM
        expect(pool.find_method_by_name("pkg.Svc.Get").kind) == HandleKind.METHOD
        expect(pool.find_message_by_name("Req")) == None
        expect(pool.find_method_by_name("pkg.Svc.Put")) == None

    def visits_every_message_once_in_pre_order(expect, write_protos):
        root = write_protos(
            {
                "a.proto": """
                syntax = "proto3";
                message A {
                    message B { message C {} }
                    map<string, int32> tags = 1;
                }
                message D {}
                """
            }
        )
        pool = DescriptorPool([root])
        visited = []

        count = pool.for_each_message(lambda h: visited.append(pool.message(h).full_name))

        expect(visited) == ["A", "A.B", "A.B.C", "A.TagsEntry", "D"]
        expect(count) == len(set(visited))

    def rejects_handles_of_the_wrong_kind(write_protos):
        root = write_protos({"a.proto": "message A {}"})
        pool = DescriptorPool([root])
        handle = pool.find_message_by_name("A")

        with pytest.raises(HandleKindError):
            pool.field(handle)

    def rejects_handles_from_another_pool(write_protos):
        root = write_protos({"a.proto": "message A {}"})
        first = DescriptorPool([root])
        second = DescriptorPool([root])

        with pytest.raises(StaleHandleError):
            second.message(first.find_message_by_name("A"))


def describe_reinitialize():
    def invalidates_previous_names_and_handles(expect, write_protos):
        old = write_protos({"old.proto": "message Old {}"}, root="old")
        new = write_protos({"new.proto": "message New {}"}, root="new")
        pool = DescriptorPool([old])
        handle = pool.find_message_by_name("Old")

        pool.reinitialize([new])

        expect(pool.generation) == 1
        expect(pool.find_message_by_name("Old")) == None
        expect(pool.find_message_by_name("New") is not None) == True
        with pytest.raises(StaleHandleError):
            pool.message(handle)

    def keeps_names_that_are_redeclared(expect, write_protos):
        root = write_protos({"a.proto": "message Keep {}"})
        pool = DescriptorPool([root])
        pool.reinitialize([root])

        expect(pool.find_message_by_name("Keep") is not None) == True

    def clears_previous_diagnostics(expect, write_protos):
        bad = write_protos({"a.proto": "message {"}, root="bad")
        good = write_protos({"a.proto": "message A {}"}, root="good")
        pool = DescriptorPool([bad], error_cb=lambda _message: None)
        expect(len(pool.diagnostics)) == 1

        pool.reinitialize([good])
        expect(pool.diagnostics) == []

    def replaces_the_error_callback(expect, write_protos):
        bad = write_protos({"a.proto": "message {"})
        first, second = [], []
        pool = DescriptorPool([bad], error_cb=first.append)

        pool.reinitialize(error_cb=second.append)
        expect(len(first)) == 1
        expect(len(second)) == 1

        same = reinit_descriptor_pool(pool, [bad])
        expect(same is pool) == True
        expect(len(second)) == 2

    def creates_or_rebuilds_through_the_module_function(expect, write_protos):
        first = write_protos({"a.proto": "message A {}"}, root="first")
        second = write_protos({"b.proto": "message B {}"}, root="second")
        errors = []

        pool = reinit_descriptor_pool(None, [first], errors.append)
        expect(pool.finalized) == True
        expect(pool.find_message_by_name("A") is not None) == True

        same = reinit_descriptor_pool(pool, [second])
        expect(same is pool) == True
        expect(pool.find_message_by_name("A")) == None
        expect(pool.find_message_by_name("B") is not None) == True


def describe_close():
    def makes_the_pool_unusable(write_protos):
        root = write_protos({"a.proto": "message A {}"})
        with DescriptorPool([root]) as pool:
            handle = pool.find_message_by_name("A")

        with pytest.raises(PoolStateError):
            pool.find_message_by_name("A")
        with pytest.raises(PoolStateError):
            pool.message(handle)
