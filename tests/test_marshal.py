"""Tests for moving Values in and out of message bodies."""

import math

import pytest

from conftest import FakeMessage, Node
from dbuscall import (
    DBUS,
    Array,
    Boolean,
    Byte,
    DecodeError,
    DictEntry,
    Double,
    Int32,
    InvalidArgument,
    MethodCall,
    MethodReturn,
    ObjectPath,
    Signature,
    String,
    Struct,
    UInt64,
    Variant,
)

SAMPLES = [
    [],
    [Byte(0), Boolean(False), Int32(-1), UInt64(1 << 63), Double(-0.25)],
    [String("héllo"), ObjectPath("/org/example"), Signature("a(ii)")],
    [Array([String("a"), String("b")])],
    [Array([], "a{sv}")],
    [Struct([Int32(1), Struct([String("nested"), Array([Byte(1), Byte(2)])])])],
    [Array([
        DictEntry(String("title"), Variant(String("Song"))),
        DictEntry(String("length"), Variant(UInt64(300))),
        DictEntry(String("tags"), Variant(Array([], "s"))),
    ])],
    [Variant(Variant(Struct([Boolean(True), Double(1.0)])))],
    [Array([Array([DictEntry(ObjectPath("/a"), Array([Int32(3)]))])])],
    [Double(math.nan), Array([Double(math.inf), Double(-0.0), Double(math.nan)])],
]


def new_call(method="Echo"):
    return MethodCall.new("com.example.Service", "/com/example", "com.example.Iface", method)


@pytest.mark.parametrize("values", SAMPLES)
def test_round_trip(fake_lib, values):
    message = new_call()
    message.append_items(values)
    decoded = message.get_items()
    assert decoded == values
    assert message.signature == "".join(v.signature for v in values)
    assert [v.signature for v in decoded] == [v.signature for v in values]


def test_empty_body_decodes_to_empty_list(fake_lib):
    assert new_call().get_items() == []


def test_containers_opened_and_closed_in_pairs(fake_lib):
    message = new_call()
    message.append_items(SAMPLES[6] + SAMPLES[8])
    assert fake_lib.opened_containers == fake_lib.closed_containers
    # a{sv} with three entries and an empty inner array, then aa{oai}
    assert fake_lib.opened_containers == 8 + 4


def test_dict_entry_outside_array_rejected_before_writing(fake_lib):
    message = new_call()
    with pytest.raises(InvalidArgument):
        message.append_items([Int32(1), DictEntry(String("k"), Int32(2))])
    with pytest.raises(InvalidArgument):
        message.append_items([Struct([DictEntry(String("k"), Int32(2))])])
    assert message.get_items() == []
    assert fake_lib.opened_containers == 0


def test_non_values_rejected(fake_lib):
    with pytest.raises(InvalidArgument):
        new_call().append_items([1, "two"])


def test_append_failure_is_out_of_memory(fake_lib):
    message = new_call()
    fake_lib.out_of_memory = True
    with pytest.raises(MemoryError):
        message.append_items([Int32(1)])
    with pytest.raises(MemoryError):
        message.append_items([Array([Int32(1)])])


def test_failed_container_contents_are_abandoned(fake_lib, monkeypatch):
    message = new_call()
    real_append = fake_lib.iter_append_basic

    def append_basic(iter, type, value):
        if type == DBUS.TYPE_STRING:
            return False
        return real_append(iter, type, value)

    monkeypatch.setattr(fake_lib, "iter_append_basic", append_basic)
    with pytest.raises(MemoryError):
        message.append_items([Int32(7), Struct([Int32(1), String("boom")])])
    assert fake_lib.abandoned_containers == 1
    assert fake_lib.closed_containers == 0
    assert message.get_items() == [Int32(7)]


def test_unknown_type_code_raises_decode_error(fake_lib):
    reply = MethodReturn(FakeMessage(DBUS.MESSAGE_TYPE_METHOD_RETURN), fake_lib)
    reply._dbobj.body = [Node(DBUS.TYPE_INT32, 1), Node(DBUS.TYPE_UNIX_FD, 4)]
    with pytest.raises(DecodeError) as info:
        reply.get_items()
    assert info.value.name == DBUS.ERROR_INVALID_SIGNATURE


def test_unknown_type_code_nested_raises_decode_error(fake_lib):
    reply = MethodReturn(FakeMessage(DBUS.MESSAGE_TYPE_METHOD_RETURN), fake_lib)
    reply._dbobj.body = [
        Node(DBUS.TYPE_VARIANT, contained="z", children=[Node(ord("z"), 0)]),
    ]
    with pytest.raises(DecodeError):
        reply.get_items()


def test_malformed_dict_entry_raises_decode_error(fake_lib):
    reply = MethodReturn(FakeMessage(DBUS.MESSAGE_TYPE_METHOD_RETURN), fake_lib)
    entry = Node(DBUS.TYPE_DICT_ENTRY, children=[Node(DBUS.TYPE_STRING, "lonely")])
    reply._dbobj.body = [Node(DBUS.TYPE_ARRAY, contained="{s}", children=[entry])]
    with pytest.raises(DecodeError):
        reply.get_items()


def test_respond_with(fake_lib):
    call = new_call()
    call.serial = 7
    response = call.respond_with([String("ok"), Int32(2)])
    assert isinstance(response, MethodReturn)
    assert response.type == DBUS.MESSAGE_TYPE_METHOD_RETURN
    assert response.reply_serial == 7
    assert response.get_items() == [String("ok"), Int32(2)]
    assert call.new_response().get_items() == []


def test_nested_arrays_past_the_limit_never_reach_the_message(fake_lib):
    value = Int32(1)
    for _ in range(DBUS.MAXIMUM_TYPE_RECURSION_DEPTH):
        value = Array([value])
    message = new_call()
    message.append_items([value])
    assert message.signature == "a" * 32 + "i"
    with pytest.raises(InvalidArgument):
        Array([value])
    with pytest.raises(InvalidArgument):
        message.append_items([Signature("(" * 33 + "i" + ")" * 33)])
