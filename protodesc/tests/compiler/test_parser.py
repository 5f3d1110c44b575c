"""Tests for the schema parser."""

import math

import pytest

from protodesc.compiler import LexicalError, ProtoSyntaxError, parse


def describe_parse_file():
    def defaults_to_proto2(expect):
        proto_file = parse("")
        expect(proto_file.syntax) == "proto2"
        expect(proto_file.package) == None
        expect(proto_file.name) == "<string>"

    def parses_syntax_package_and_imports(expect):
        proto_file = parse(
            """
            syntax = "proto3";
            package foo.bar;
            import "a.proto";
            import public "b.proto";
            import weak "c.proto";
            option java_package = "com.example";
            """,
            "test.proto",
        )
        expect(proto_file.name) == "test.proto"
        expect(proto_file.syntax) == "proto3"
        expect(proto_file.package) == "foo.bar"
        expect([(i.path, i.modifier) for i in proto_file.imports]) == [
            ("a.proto", None),
            ("b.proto", "public"),
            ("c.proto", "weak"),
        ]
        expect(proto_file.options[0].name) == "java_package"
        expect(proto_file.options[0].value.value) == "com.example"

    def concatenates_adjacent_strings(expect):
        proto_file = parse('option foo = "ab" \'cd\';')
        expect(proto_file.options[0].value.value) == "abcd"

    def rejects_unknown_syntax(expect):
        with pytest.raises(ProtoSyntaxError) as excinfo:
            parse('syntax = "proto4";', "x.proto")
        expect("proto4" in str(excinfo.value)) == True
        expect(excinfo.value.diagnostic.file) == "x.proto"

    def rejects_multiple_packages():
        with pytest.raises(ProtoSyntaxError):
            parse("package a; package b;")


def describe_parse_message():
    def parses_labelled_fields(expect):
        proto_file = parse(
            """
            message Foo {
                optional int32 a = 1;
                required string b = 2;
                repeated .pkg.Bar c = 3;
            }
            """
        )
        message = proto_file.messages[0]
        expect(message.name) == "Foo"
        expect([(f.label, f.type_name, f.name, f.number) for f in message.fields]) == [
            ("optional", "int32", "a", 1),
            ("required", "string", "b", 2),
            ("repeated", ".pkg.Bar", "c", 3),
        ]

    def parses_unlabelled_fields_in_proto3(expect):
        proto_file = parse('syntax = "proto3"; message Foo { int32 a = 1; Bar.Baz b = 0x10; }')
        fields = proto_file.messages[0].fields
        expect(fields[0].label) == None
        expect(fields[1].type_name) == "Bar.Baz"
        expect(fields[1].number) == 16

    def parses_field_options(expect):
        proto_file = parse(
            """
            message Foo {
                optional int32 a = 1 [default = -5, deprecated = true];
                repeated int32 b = 2 [packed = false];
                optional double c = 3 [default = -inf];
                optional float d = 4 [default = 1.5e3];
                optional string e = 5 [default = "hi\\n"];
            }
            """
        )
        a, b, c, d, e = proto_file.messages[0].fields
        expect(a.option("default").value.kind) == "int"
        expect(a.option("default").value.value) == -5
        expect(a.option("deprecated").value.value) == "true"
        expect(b.option("packed").value.kind) == "ident"
        expect(b.option("packed").value.value) == "false"
        expect(math.isinf(c.option("default").value.value)) == True
        expect(c.option("default").value.value < 0) == True
        expect(d.option("default").value.value) == 1500.0
        expect(e.option("default").value.value) == "hi\n"
        expect(e.option("missing")) == None

    def allows_keywords_as_field_names(expect):
        proto_file = parse("message Foo { optional int32 message = 1; optional bool option = 2; }")
        expect([f.name for f in proto_file.messages[0].fields]) == ["message", "option"]

    def parses_nested_messages_and_enums(expect):
        proto_file = parse(
            """
            message Outer {
                message Inner {
                    enum Kind { A = 0; B = -1; }
                    optional Kind kind = 1;
                }
                optional Inner inner = 1;
            }
            """
        )
        outer = proto_file.messages[0]
        inner = outer.messages[0]
        expect(inner.name) == "Inner"
        expect(inner.enums[0].name) == "Kind"
        expect([(v.name, v.number) for v in inner.enums[0].values]) == [("A", 0), ("B", -1)]

    def parses_oneofs(expect):
        proto_file = parse(
            """
            message Foo {
                optional int32 id = 1;
                oneof choice {
                    string name = 2;
                    int32 number = 3;
                }
            }
            """
        )
        message = proto_file.messages[0]
        expect(message.oneofs) == ["choice"]
        expect([(f.name, f.oneof) for f in message.fields]) == [
            ("id", None),
            ("name", "choice"),
            ("number", "choice"),
        ]

    def parses_map_fields(expect):
        proto_file = parse('syntax = "proto3"; message Foo { map<string, Bar> items = 1; }')
        field = proto_file.messages[0].fields[0]
        expect(field.name) == "items"
        expect(field.map_key) == "string"
        expect(field.map_value) == "Bar"
        expect(field.label) == None

    def parses_groups_as_field_and_nested_message(expect):
        proto_file = parse(
            """
            message SearchResponse {
                repeated group Result = 1 {
                    required string url = 2;
                }
            }
            """
        )
        message = proto_file.messages[0]
        field = message.fields[0]
        expect(field.name) == "result"
        expect(field.type_name) == "Result"
        expect(field.is_group) == True
        expect(message.messages[0].name) == "Result"
        expect(message.messages[0].fields[0].name) == "url"

    def parses_extensions_and_reserved(expect):
        proto_file = parse(
            """
            message Foo {
                extensions 100 to 199, 500 to max;
                reserved 2, 15, 9 to 11;
                reserved "foo", "bar";
            }
            """
        )
        message = proto_file.messages[0]
        expect(message.extension_ranges) == [(100, 199), (500, None)]
        expect(message.reserved_ranges) == [(2, 2), (15, 15), (9, 11)]
        expect(message.reserved_names) == ["foo", "bar"]

    def parses_extend_blocks(expect):
        proto_file = parse(
            """
            extend Foo {
                optional int32 bar = 126;
            }
            message Baz {
                extend Foo { optional Baz baz = 127; }
            }
            """
        )
        expect(proto_file.extends[0].extendee) == "Foo"
        expect(proto_file.extends[0].fields[0].name) == "bar"
        expect(proto_file.messages[0].extends[0].fields[0].type_name) == "Baz"

    def parses_custom_and_aggregate_options(expect):
        proto_file = parse(
            """
            message Foo {
                option (my.opt).sub = "x";
                option (rule) = { min: 1 max: 10 tags: ["a", "b"] nested { on: true } };
            }
            """
        )
        custom, aggregate = proto_file.messages[0].options
        expect(custom.name) == "(my.opt).sub"
        expect(aggregate.value.kind) == "aggregate"
        expect(aggregate.value.value) == {
            "min": 1,
            "max": 10,
            "tags": ["a", "b"],
            "nested": {"on": "true"},
        }


def describe_parse_enum():
    def parses_options_and_reserved(expect):
        proto_file = parse(
            """
            enum Color {
                option allow_alias = true;
                RED = 0;
                CRIMSON = 0 [deprecated = true];
                reserved 5 to 7;
                reserved "BLUE";
            }
            """
        )
        enum = proto_file.enums[0]
        expect(enum.options[0].name) == "allow_alias"
        expect(len(enum.values)) == 2
        expect(enum.values[1].options[0].name) == "deprecated"
        expect(enum.reserved_ranges) == [(5, 7)]
        expect(enum.reserved_names) == ["BLUE"]

    def allows_keywords_as_value_names(expect):
        proto_file = parse("enum E { option = 0; reserved = 1; option allow_alias = true; }")
        enum = proto_file.enums[0]
        expect([v.name for v in enum.values]) == ["option", "reserved"]
        expect(enum.values[1].column) == 22
        expect(enum.options[0].name) == "allow_alias"


def describe_parse_service():
    def parses_rpcs_with_streaming(expect):
        proto_file = parse(
            """
            package pkg;
            service Search {
                rpc Find (Query) returns (Result);
                rpc Watch (stream Query) returns (stream .pkg.Result) {
                    option deprecated = true;
                }
            }
            """
        )
        service = proto_file.services[0]
        find, watch = service.methods
        expect((find.name, find.input_type, find.output_type)) == ("Find", "Query", "Result")
        expect((find.client_streaming, find.server_streaming)) == (False, False)
        expect((watch.client_streaming, watch.server_streaming)) == (True, True)
        expect(watch.output_type) == ".pkg.Result"
        expect(watch.options[0].name) == "deprecated"


def describe_parse_errors():
    def reports_syntax_errors_with_position(expect):
        with pytest.raises(ProtoSyntaxError) as excinfo:
            parse('syntax = "proto3";\nmessage Foo {\n  int32 x = ;\n}', "bad.proto")

        diagnostic = excinfo.value.diagnostic
        expect(diagnostic.file) == "bad.proto"
        expect(diagnostic.line) == 3
        expect(diagnostic.column) == 13
        expect(diagnostic.message.startswith("Unexpected ';'")) == True

    def reports_unexpected_end_of_input(expect):
        with pytest.raises(ProtoSyntaxError) as excinfo:
            parse("message Foo {")
        expect("end of input" in excinfo.value.diagnostic.message) == True

    def reports_lexical_errors(expect):
        with pytest.raises(LexicalError) as excinfo:
            parse("message Foo {\n  optional int32 x = 1 @\n}")
        expect(excinfo.value.diagnostic.line) == 2

    def reports_bad_escapes_as_lexical_errors():
        with pytest.raises(LexicalError):
            parse(r'option foo = "\q";')

    def requires_labels_in_proto2(expect):
        with pytest.raises(ProtoSyntaxError) as excinfo:
            parse("message Foo { int32 x = 1; }")
        expect("needs a label" in str(excinfo.value)) == True

    def rejects_required_in_proto3():
        with pytest.raises(ProtoSyntaxError):
            parse('syntax = "proto3"; message Foo { required int32 x = 1; }')

    def rejects_groups_in_proto3():
        with pytest.raises(ProtoSyntaxError):
            parse('syntax = "proto3"; message Foo { optional group G = 1 { } }')

    def rejects_invalid_map_keys():
        with pytest.raises(ProtoSyntaxError):
            parse('syntax = "proto3"; message Foo { map<float, string> m = 1; }')

    def rejects_labelled_map_fields():
        with pytest.raises(ProtoSyntaxError):
            parse("message Foo { repeated map<string, string> m = 1; }")
