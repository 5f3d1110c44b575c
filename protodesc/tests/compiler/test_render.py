"""Tests for rendering linked messages as schema text."""

import pytest

from protodesc.compiler.render import format_default, render_message
from protodesc.descriptors import query
from protodesc.descriptors.pool import DescriptorPool

SCHEMA = r"""
package shop;

enum Status { UNKNOWN = 0; ACTIVE = 1; }

message Item {
    optional int32 count = 1 [default = 5];
    repeated Status states = 2;
    map<string, Inner> lookup = 3;
    optional string note = 4 [default = "a\"b"];
    oneof choice {
        double weight = 5 [default = -inf];
        bytes raw = 6 [default = "\001"];
    }

    message Inner {
        optional bool on = 1 [default = true];
    }
    enum Size { SMALL = 1; }
}
"""


@pytest.fixture
def pool(write_protos):
    return DescriptorPool([write_protos({"shop.proto": SCHEMA})])


def describe_render_message():
    def renders_fields_with_resolved_names(expect, pool):
        text = render_message(pool, pool.find_message_by_name("shop.Item"))

        expect(text.startswith("// shop.Item from shop.proto\nmessage Item {\n")) == True
        expect("  optional int32 count = 1 [default = 5];\n" in text) == True
        expect("  repeated .shop.Status states = 2;\n" in text) == True
        expect("  map<string, .shop.Item.Inner> lookup = 3;\n" in text) == True
        expect('  optional string note = 4 [default = "a\\"b"];\n' in text) == True
        expect("  optional double weight = 5 [default = -inf];  // oneof choice\n" in text) == True

    def renders_nested_types_indented(expect, pool):
        text = render_message(pool, pool.find_message_by_name("shop.Item"))

        expect("  message Inner {\n    optional bool on = 1 [default = true];\n  }\n" in text) == True
        expect("  enum Size {\n    SMALL = 1;\n  }\n" in text) == True
        expect("LookupEntry" in text) == False
        expect(text.endswith("}\n")) == True


def describe_format_default():
    def formats_literals_by_type(expect, pool):
        item = pool.find_message_by_name("shop.Item")

        def default(name):
            return format_default(pool, query.message_find_field_by_name(pool, item, name))

        expect(default("count")) == "5"
        expect(default("note")) == '"a\\"b"'
        expect(default("raw")) == '"\\001"'
        expect(default("weight")) == "-inf"
        expect(default("states")) == None
