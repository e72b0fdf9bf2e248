"""Shared fixtures: an in-process stand-in for libdbus."""

import pytest

import dbuscall
from dbuscall import DBUS


class Node:
    """One item in a fake message body; containers hold child nodes."""

    def __init__(self, code, value=None, contained=None, children=None):
        self.code = code
        self.value = value
        self.contained = contained
        self.children = children

    @property
    def signature(self):
        if self.code == DBUS.TYPE_ARRAY:
            return "a" + self.contained
        if self.code == DBUS.TYPE_STRUCT:
            return "(" + "".join(c.signature for c in self.children) + ")"
        if self.code == DBUS.TYPE_DICT_ENTRY:
            return "{" + "".join(c.signature for c in self.children) + "}"
        return chr(self.code)


class FakeMessage:
    def __init__(self, type, destination=None, path=None, interface=None,
                 member=None, error_name=None, reply_serial=0):
        self.type = type
        self.destination = destination
        self.path = path
        self.interface = interface
        self.member = member
        self.error_name = error_name
        self.sender = None
        self.serial = 0
        self.reply_serial = reply_serial
        self.body = []
        self.refs = 1

    @classmethod
    def error(cls, name, text):
        message = cls(DBUS.MESSAGE_TYPE_ERROR, error_name=name)
        message.body.append(Node(DBUS.TYPE_STRING, text))
        return message


class FakeIter:
    def __init__(self, items, node=None):
        self.items = items
        self.node = node
        self.pos = 0


class FakeError:
    def __init__(self):
        self.name = None
        self.message = None
        self.freed = 0


class FakeConnection:
    def __init__(self, bus_kind):
        self.bus_kind = bus_kind
        self.exit_on_disconnect = True
        self.closed = 0
        self.unrefs = 0


def default_responder(call):
    """Plays the remote peer: decides what comes back for each call."""
    if call.member in ("Ping", "Play"):
        return FakeMessage(DBUS.MESSAGE_TYPE_METHOD_RETURN)
    if call.member == "Echo":
        reply = FakeMessage(DBUS.MESSAGE_TYPE_METHOD_RETURN)
        reply.body = list(call.body)
        return reply
    if call.member == "Fail":
        return FakeMessage.error("com.example.Error.Broken", "it broke")
    if call.member == "Emit":
        return FakeMessage(DBUS.MESSAGE_TYPE_SIGNAL)
    if call.member == "Slow":
        return (DBUS.ERROR_NO_REPLY, "Did not receive a reply")
    return (DBUS.ERROR_UNKNOWN_METHOD, "No such method %s" % call.member)


class FakeLib:
    """Implements the primitives dbuscall expects from libdbus, in memory."""

    def __init__(self):
        self.responder = default_responder
        self.connect_error = None
        self.out_of_memory = False
        self.connections = []
        self.sent = []
        self.errors = []
        self.opened_containers = 0
        self.closed_containers = 0
        self.abandoned_containers = 0
        self.next_serial = 1

    # errors

    def error_init(self):
        error = FakeError()
        self.errors.append(error)
        return error

    def error_free(self, error):
        error.freed += 1

    def error_is_set(self, error):
        return error.name is not None

    def error_name(self, error):
        return error.name

    def error_message(self, error):
        return error.message

    def set_error_from_message(self, error, message):
        if message.type != DBUS.MESSAGE_TYPE_ERROR:
            return False
        error.name = message.error_name
        strings = [n.value for n in message.body if n.code == DBUS.TYPE_STRING]
        error.message = strings[0] if strings else ""
        return True

    # bus and connections

    def bus_get_private(self, bus_kind, error):
        if self.connect_error is not None:
            error.name, error.message = self.connect_error
            return None
        conn = FakeConnection(bus_kind)
        self.connections.append(conn)
        return conn

    def bus_get_unique_name(self, conn):
        return ":1.%d" % self.connections.index(conn)

    def connection_set_exit_on_disconnect(self, conn, exit_on_disconnect):
        conn.exit_on_disconnect = exit_on_disconnect

    def connection_send_with_reply_and_block(self, conn, message, timeout, error):
        assert conn.closed == 0
        message.serial = self.next_serial
        self.next_serial += 1
        self.sent.append((message, timeout))
        outcome = self.responder(message)
        if isinstance(outcome, tuple):
            error.name, error.message = outcome
            return None
        outcome.reply_serial = message.serial
        return outcome

    def connection_close(self, conn):
        assert conn.unrefs == 0, "close after unref"
        conn.closed += 1

    def connection_unref(self, conn):
        conn.unrefs += 1

    # messages

    def message_new_method_call(self, destination, path, iface, method):
        if self.out_of_memory:
            return None
        return FakeMessage(DBUS.MESSAGE_TYPE_METHOD_CALL, destination, path, iface, method)

    def message_new_method_return(self, message):
        assert message.serial != 0, "reply to unsent message"
        if self.out_of_memory:
            return None
        return FakeMessage(DBUS.MESSAGE_TYPE_METHOD_RETURN, reply_serial=message.serial)

    def message_new_error(self, reply_to, name, text):
        assert reply_to.serial != 0, "reply to unsent message"
        if self.out_of_memory:
            return None
        reply = FakeMessage.error(name, text)
        reply.reply_serial = reply_to.serial
        return reply

    def message_unref(self, message):
        message.refs -= 1
        assert message.refs >= 0, "message released twice"

    def message_get_type(self, message):
        return message.type

    def message_get_path(self, message):
        return message.path

    def message_get_interface(self, message):
        return message.interface

    def message_get_member(self, message):
        return message.member

    def message_get_error_name(self, message):
        return message.error_name

    def message_get_destination(self, message):
        return message.destination

    def message_get_sender(self, message):
        return message.sender

    def message_get_signature(self, message):
        return "".join(n.signature for n in message.body)

    def message_get_serial(self, message):
        return message.serial

    def message_set_serial(self, message, serial):
        assert serial != 0
        message.serial = serial

    def message_get_reply_serial(self, message):
        return message.reply_serial

    # iterators

    def iter_init(self, message):
        if not message.body:
            return None
        return FakeIter(message.body)

    def iter_init_append(self, message):
        return FakeIter(message.body)

    def iter_get_arg_type(self, iter):
        if iter.pos < len(iter.items):
            return iter.items[iter.pos].code
        return DBUS.TYPE_INVALID

    def iter_get_signature(self, iter):
        return iter.items[iter.pos].signature

    def iter_get_basic(self, iter):
        return iter.items[iter.pos].value

    def iter_next(self, iter):
        iter.pos += 1
        return iter.pos < len(iter.items)

    def iter_recurse(self, iter):
        return FakeIter(iter.items[iter.pos].children)

    def iter_append_basic(self, iter, type, value):
        if self.out_of_memory:
            return False
        iter.items.append(Node(type, value))
        return True

    def iter_open_container(self, iter, type, contained_signature):
        if self.out_of_memory:
            return None
        node = Node(type, contained=contained_signature, children=[])
        iter.items.append(node)
        self.opened_containers += 1
        return FakeIter(node.children, node)

    def iter_close_container(self, iter, subiter):
        self.closed_containers += 1
        return True

    def iter_abandon_container(self, iter, subiter):
        iter.items.remove(subiter.node)
        self.abandoned_containers += 1


@pytest.fixture
def fake_lib(monkeypatch):
    lib = FakeLib()
    monkeypatch.setattr(dbuscall, "_lib", lib)
    return lib


@pytest.fixture
def conn(fake_lib):
    connection = dbuscall.Connection.new()
    yield connection
    connection.close()
