"""Tests for JSON Schema flattening."""

from __future__ import annotations

from typing import Any

import pytest

from jsoninline import UnsupportedShapeError, flatten_schema, marshal, schema_for

from models import (
    A,
    Addr,
    B,
    China,
    Contact,
    DNSServerOption,
    DialerOption,
    Holder,
    Labels,
    LocalDNSServerOption,
    NestedFoo,
    Node,
    Person,
    Record,
    StrictRecord,
    UDPDNSServerOption,
    User,
)


def _resolve(schema: dict[str, Any], node: dict[str, Any]) -> dict[str, Any]:
    while "$ref" in node:
        node = schema["$defs"][node["$ref"].rsplit("/", 1)[-1]]
    return node


def _permitted_keys(schema: dict[str, Any], node: dict[str, Any]) -> set[str]:
    node = _resolve(schema, node)
    keys = set(node.get("properties", {}))
    for alternative in node.get("anyOf", []):
        keys |= _permitted_keys(schema, alternative)
    return keys


def _accepts(schema: dict[str, Any], node: dict[str, Any], document: dict[str, Any]) -> bool:
    node = _resolve(schema, node)
    if not set(node.get("required", [])) <= set(document):
        return False
    alternatives = node.get("anyOf")
    return not alternatives or any(_accepts(schema, alt, document) for alt in alternatives)


def _assert_valid(schema: dict[str, Any], document: dict[str, Any]) -> None:
    assert set(document) <= _permitted_keys(schema, schema)
    assert _accepts(schema, schema, document)


class TestUser:
    @pytest.fixture
    def schema(self):
        return schema_for(User)

    def test_inline_field_names_are_not_properties(self, schema):
        assert set(schema["properties"]) == {"id", "name", "email"}

    def test_inline_records_become_alternatives(self, schema):
        china, usa = schema["anyOf"]

        assert set(china["properties"]) == {"city", "province"}
        assert set(usa["properties"]) == {"city", "state"}
        assert set(china["anyOf"][0]["properties"]) == {"foo_field"}
        assert set(usa["anyOf"][0]["properties"]) == {"bar_field"}

    def test_unreferenced_definitions_are_dropped(self, schema):
        assert "$defs" not in schema

    def test_encoded_keys_are_permitted(self, schema):
        user = User(
            id=1,
            china=China(city="c", province="p", nested_foo=NestedFoo(foo_field="f")),
        )
        assert set(marshal(user)) <= _permitted_keys(schema, schema)


def test_concrete_record_schema():
    schema = schema_for(Record)

    assert set(schema["properties"]) == {"id"}
    assert [set(alt["properties"]) for alt in schema["anyOf"]] == [{"city"}, {"city"}]
    assert marshal(Record(id=1, a=A(city="X"), b=B(city="Y"))).keys() <= _permitted_keys(schema, schema)


def test_required_inline_field_is_no_longer_required():
    schema = schema_for(StrictRecord)

    assert schema["required"] == ["id"]
    assert "a" not in schema["properties"]
    assert set(schema["anyOf"][0]["properties"]) == {"city"}


def test_self_referencing_record_terminates():
    schema = schema_for(Node)
    node = _resolve(schema, schema)

    assert set(node["properties"]) == {"label"}
    assert len(node["anyOf"]) == 1
    assert set(node["anyOf"][0]["properties"]) == {"label"}


def test_records_under_ordinary_fields_are_flattened():
    schema = schema_for(Holder)

    assert set(schema["properties"]) == {"label", "record", "records"}
    assert set(schema["$defs"]) == {"Record"}
    record = schema["$defs"]["Record"]
    assert set(record["properties"]) == {"id"}
    assert len(record["anyOf"]) == 2


def test_sequence_schema():
    schema = schema_for(list[DNSServerOption])
    option = _resolve(schema, schema["items"])

    assert set(option["properties"]) == {"type", "tag"}
    assert option["required"] == ["type", "tag"]
    local, udp, tls = option["anyOf"]
    assert set(local["properties"]) == {"prefer_go"}
    assert set(udp["properties"]) == {"server", "server_port"}
    assert set(udp["anyOf"][0]["properties"]) == {"timeout"}
    assert set(tls["properties"]) == {"server", "server_port", "tls"}


def test_fixed_tuple_schema():
    schema = schema_for(tuple[Record, Holder])
    record = _resolve(schema, schema["prefixItems"][0])
    assert set(record["properties"]) == {"id"}


def test_skipped_and_helper_fields_are_removed():
    schema = schema_for(Contact)
    assert set(schema["properties"]) == {"email", "phone", "displayName"}


def test_inline_mapping_becomes_alternative():
    schema = schema_for(Labels)

    assert set(schema["properties"]) == {"name"}
    assert schema["anyOf"][0]["type"] == "object"


def test_schema_options_are_passed_through():
    schema = schema_for(Holder, ref_template="#/components/schemas/{model}")

    assert schema["properties"]["records"]["items"]["$ref"] == "#/components/schemas/Record"
    assert set(schema["$defs"]["Record"]["properties"]) == {"id"}


def test_unreconcilable_schema_fails():
    with pytest.raises(UnsupportedShapeError):
        flatten_schema({"type": "string"}, User)


class TestEncodedDocumentsAreValid:
    def test_absent_optional_inline_record(self):
        schema = schema_for(Person)

        _assert_valid(schema, marshal(Person(id=1)))
        _assert_valid(schema, marshal(Person(id=2, addr=Addr(city="Oslo"))))

    def test_optional_alternative_drops_required(self):
        schema = schema_for(Person)
        assert "required" not in schema["anyOf"][0]
        assert set(schema["anyOf"][0]["properties"]) == {"city", "zip"}

    def test_users(self):
        schema = schema_for(User)

        _assert_valid(schema, marshal(User(id=11)))
        _assert_valid(schema, marshal(User(id=1, china=China(city="c", nested_foo=NestedFoo(foo_field="f")))))

    def test_required_keys_survive(self):
        schema = schema_for(StrictRecord)

        _assert_valid(schema, marshal(StrictRecord(id=1, a=A(city="c"))))
        assert not _accepts(schema, schema, {"city": "c"})

    def test_dns_options(self):
        schema = schema_for(DNSServerOption)

        options = [
            DNSServerOption(type="local", tag="l", local=LocalDNSServerOption(prefer_go=True)),
            DNSServerOption(type="udp", tag="u", udp=UDPDNSServerOption(server="1.1.1.1", dialer=DialerOption(timeout=5))),
        ]
        for option in options:
            _assert_valid(schema, marshal(option))
