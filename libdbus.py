"""
ctypes binding for the part of libdbus <https://dbus.freedesktop.org/doc/api/html/index.html>
that dbuscall needs: private bus connections, blocking sends, message
construction and the message-iterator primitives. Importing this module loads
the shared library.
"""
#+
# Copyright 2017 Lawrence D'Oliveiro <ldo@geek-central.gen.nz>.
# Licensed under the GNU Lesser General Public License v2.1 or later.
#-

import ctypes as ct
from dbuscall import \
    DBUS

LIBRARY_NAME = "libdbus-1.so.3"

dbus = ct.cdll.LoadLibrary(LIBRARY_NAME)

class NATIVE :
    "ctypes layouts and type mappings for libdbus structures."

    # General ctypes gotcha: when passing addresses of ctypes-constructed objects
    # to routine calls, do not construct the objects directly in the call. Otherwise
    # the refcount goes to 0 before the routine is actually entered, and the object
    # can get prematurely disposed. Always store the object reference into a local
    # variable, and pass the value of the variable instead.

    # from dbus-types.h:

    bool_t = ct.c_uint

    basic_to_ctypes = \
        { # ctypes objects suitable for holding values of D-Bus types
            DBUS.TYPE_BYTE : ct.c_ubyte,
            DBUS.TYPE_BOOLEAN : bool_t,
            DBUS.TYPE_INT16 : ct.c_int16,
            DBUS.TYPE_UINT16 : ct.c_uint16,
            DBUS.TYPE_INT32 : ct.c_int32,
            DBUS.TYPE_UINT32 : ct.c_uint32,
            DBUS.TYPE_INT64 : ct.c_int64,
            DBUS.TYPE_UINT64 : ct.c_uint64,
            DBUS.TYPE_DOUBLE : ct.c_double,
            DBUS.TYPE_STRING : ct.c_char_p,
            DBUS.TYPE_OBJECT_PATH : ct.c_char_p,
            DBUS.TYPE_SIGNATURE : ct.c_char_p,
        }

    # from dbus-errors.h:

    class Error(ct.Structure) :
        _fields_ = \
            [
                ("name", ct.c_char_p),
                ("message", ct.c_char_p),
                ("padding", 2 * ct.c_void_p),
            ]
    #end Error
    ErrorPtr = ct.POINTER(Error)

    # from dbus-message.h:

    class MessageIter(ct.Structure) :
        "contains no public fields."
        _fields_ = \
            [
                ("dummy1", ct.c_void_p),
                ("dummy2", ct.c_void_p),
                ("dummy3", ct.c_uint),
                ("dummy4", ct.c_int),
                ("dummy5", ct.c_int),
                ("dummy6", ct.c_int),
                ("dummy7", ct.c_int),
                ("dummy8", ct.c_int),
                ("dummy9", ct.c_int),
                ("dummy10", ct.c_int),
                ("dummy11", ct.c_int),
                ("pad1", ct.c_int),
                ("pad2", ct.c_void_p),
                ("pad3", ct.c_void_p),
            ]
    #end MessageIter
    MessageIterPtr = ct.POINTER(MessageIter)

#end NATIVE

#+
# Library prototypes
#-

# from dbus-errors.h:
dbus.dbus_error_init.restype = None
dbus.dbus_error_init.argtypes = (NATIVE.ErrorPtr,)
dbus.dbus_error_free.restype = None
dbus.dbus_error_free.argtypes = (NATIVE.ErrorPtr,)
dbus.dbus_error_is_set.restype = NATIVE.bool_t
dbus.dbus_error_is_set.argtypes = (NATIVE.ErrorPtr,)
dbus.dbus_set_error_from_message.restype = NATIVE.bool_t
dbus.dbus_set_error_from_message.argtypes = (NATIVE.ErrorPtr, ct.c_void_p)

# from dbus-bus.h:
dbus.dbus_bus_get_private.restype = ct.c_void_p
dbus.dbus_bus_get_private.argtypes = (ct.c_uint, NATIVE.ErrorPtr)
dbus.dbus_bus_get_unique_name.restype = ct.c_char_p
dbus.dbus_bus_get_unique_name.argtypes = (ct.c_void_p,)

# from dbus-connection.h:
dbus.dbus_connection_close.restype = None
dbus.dbus_connection_close.argtypes = (ct.c_void_p,)
dbus.dbus_connection_unref.restype = None
dbus.dbus_connection_unref.argtypes = (ct.c_void_p,)
dbus.dbus_connection_set_exit_on_disconnect.restype = None
dbus.dbus_connection_set_exit_on_disconnect.argtypes = (ct.c_void_p, NATIVE.bool_t)
dbus.dbus_connection_send_with_reply_and_block.restype = ct.c_void_p
dbus.dbus_connection_send_with_reply_and_block.argtypes = (ct.c_void_p, ct.c_void_p, ct.c_int, NATIVE.ErrorPtr)

# from dbus-message.h:
dbus.dbus_message_new_method_call.restype = ct.c_void_p
dbus.dbus_message_new_method_call.argtypes = (ct.c_char_p, ct.c_char_p, ct.c_char_p, ct.c_char_p)
dbus.dbus_message_new_method_return.restype = ct.c_void_p
dbus.dbus_message_new_method_return.argtypes = (ct.c_void_p,)
dbus.dbus_message_new_error.restype = ct.c_void_p
dbus.dbus_message_new_error.argtypes = (ct.c_void_p, ct.c_char_p, ct.c_char_p)
dbus.dbus_message_unref.restype = None
dbus.dbus_message_unref.argtypes = (ct.c_void_p,)
dbus.dbus_message_get_type.restype = ct.c_int
dbus.dbus_message_get_type.argtypes = (ct.c_void_p,)
dbus.dbus_message_get_path.restype = ct.c_char_p
dbus.dbus_message_get_path.argtypes = (ct.c_void_p,)
dbus.dbus_message_get_interface.restype = ct.c_char_p
dbus.dbus_message_get_interface.argtypes = (ct.c_void_p,)
dbus.dbus_message_get_member.restype = ct.c_char_p
dbus.dbus_message_get_member.argtypes = (ct.c_void_p,)
dbus.dbus_message_get_error_name.restype = ct.c_char_p
dbus.dbus_message_get_error_name.argtypes = (ct.c_void_p,)
dbus.dbus_message_get_destination.restype = ct.c_char_p
dbus.dbus_message_get_destination.argtypes = (ct.c_void_p,)
dbus.dbus_message_get_sender.restype = ct.c_char_p
dbus.dbus_message_get_sender.argtypes = (ct.c_void_p,)
dbus.dbus_message_get_signature.restype = ct.c_char_p
dbus.dbus_message_get_signature.argtypes = (ct.c_void_p,)
dbus.dbus_message_get_serial.restype = ct.c_uint
dbus.dbus_message_get_serial.argtypes = (ct.c_void_p,)
dbus.dbus_message_set_serial.restype = None
dbus.dbus_message_set_serial.argtypes = (ct.c_void_p, ct.c_uint)
dbus.dbus_message_get_reply_serial.restype = ct.c_uint
dbus.dbus_message_get_reply_serial.argtypes = (ct.c_void_p,)
dbus.dbus_message_iter_init.restype = NATIVE.bool_t
dbus.dbus_message_iter_init.argtypes = (ct.c_void_p, NATIVE.MessageIterPtr)
dbus.dbus_message_iter_next.restype = NATIVE.bool_t
dbus.dbus_message_iter_next.argtypes = (NATIVE.MessageIterPtr,)
dbus.dbus_message_iter_get_signature.restype = ct.c_void_p
dbus.dbus_message_iter_get_signature.argtypes = (NATIVE.MessageIterPtr,)
dbus.dbus_message_iter_get_arg_type.restype = ct.c_int
dbus.dbus_message_iter_get_arg_type.argtypes = (NATIVE.MessageIterPtr,)
dbus.dbus_message_iter_recurse.restype = None
dbus.dbus_message_iter_recurse.argtypes = (NATIVE.MessageIterPtr, NATIVE.MessageIterPtr)
dbus.dbus_message_iter_get_basic.restype = None
dbus.dbus_message_iter_get_basic.argtypes = (NATIVE.MessageIterPtr, ct.c_void_p)
dbus.dbus_message_iter_init_append.restype = None
dbus.dbus_message_iter_init_append.argtypes = (ct.c_void_p, NATIVE.MessageIterPtr)
dbus.dbus_message_iter_append_basic.restype = NATIVE.bool_t
dbus.dbus_message_iter_append_basic.argtypes = (NATIVE.MessageIterPtr, ct.c_int, ct.c_void_p)
dbus.dbus_message_iter_open_container.restype = NATIVE.bool_t
dbus.dbus_message_iter_open_container.argtypes = (NATIVE.MessageIterPtr, ct.c_int, ct.c_char_p, NATIVE.MessageIterPtr)
dbus.dbus_message_iter_close_container.restype = NATIVE.bool_t
dbus.dbus_message_iter_close_container.argtypes = (NATIVE.MessageIterPtr, NATIVE.MessageIterPtr)
dbus.dbus_message_iter_abandon_container.restype = None
dbus.dbus_message_iter_abandon_container.argtypes = (NATIVE.MessageIterPtr, NATIVE.MessageIterPtr)

# from dbus-memory.h:
dbus.dbus_free.restype = None
dbus.dbus_free.argtypes = (ct.c_void_p,)

def _decode(c_str) :
    return \
        (lambda : None, lambda : c_str.decode())[c_str != None]()
#end _decode

def _encode(s) :
    return \
        (lambda : None, lambda : s.encode())[s != None]()
#end _encode

class LibDBus :
    "the native D-Bus primitives used by dbuscall, implemented on libdbus." \
    " Connection and message handles are opaque addresses; errors are" \
    " NATIVE.Error structures and iterators are NATIVE.MessageIter structures." \
    " Calls that allocate return None when libdbus runs out of memory."

    __slots__ = ()

    # errors <https://dbus.freedesktop.org/doc/api/html/group__DBusErrors.html>

    def error_init(self) :
        error = NATIVE.Error()
        dbus.dbus_error_init(ct.byref(error))
        return \
            error
    #end error_init

    def error_free(self, error) :
        dbus.dbus_error_free(ct.byref(error))
    #end error_free

    def error_is_set(self, error) :
        return \
            dbus.dbus_error_is_set(ct.byref(error)) != 0
    #end error_is_set

    def error_name(self, error) :
        return \
            _decode(error.name)
    #end error_name

    def error_message(self, error) :
        return \
            _decode(error.message)
    #end error_message

    def set_error_from_message(self, error, message) :
        return \
            dbus.dbus_set_error_from_message(ct.byref(error), message) != 0
    #end set_error_from_message

    # bus <https://dbus.freedesktop.org/doc/api/html/group__DBusBus.html>

    def bus_get_private(self, bus_kind, error) :
        return \
            dbus.dbus_bus_get_private(bus_kind, ct.byref(error))
    #end bus_get_private

    def bus_get_unique_name(self, conn) :
        return \
            _decode(dbus.dbus_bus_get_unique_name(conn))
    #end bus_get_unique_name

    # connections <https://dbus.freedesktop.org/doc/api/html/group__DBusConnection.html>

    def connection_set_exit_on_disconnect(self, conn, exit_on_disconnect) :
        dbus.dbus_connection_set_exit_on_disconnect(conn, exit_on_disconnect)
    #end connection_set_exit_on_disconnect

    def connection_send_with_reply_and_block(self, conn, message, timeout, error) :
        return \
            dbus.dbus_connection_send_with_reply_and_block(conn, message, timeout, ct.byref(error))
    #end connection_send_with_reply_and_block

    def connection_close(self, conn) :
        dbus.dbus_connection_close(conn)
    #end connection_close

    def connection_unref(self, conn) :
        dbus.dbus_connection_unref(conn)
    #end connection_unref

    # messages <https://dbus.freedesktop.org/doc/api/html/group__DBusMessage.html>

    def message_new_method_call(self, destination, path, iface, method) :
        return \
            dbus.dbus_message_new_method_call \
              (
                _encode(destination),
                _encode(path),
                _encode(iface),
                _encode(method),
              )
    #end message_new_method_call

    def message_new_method_return(self, message) :
        return \
            dbus.dbus_message_new_method_return(message)
    #end message_new_method_return

    def message_new_error(self, reply_to, name, message) :
        return \
            dbus.dbus_message_new_error(reply_to, name.encode(), _encode(message))
    #end message_new_error

    def message_unref(self, message) :
        dbus.dbus_message_unref(message)
    #end message_unref

    def message_get_type(self, message) :
        return \
            dbus.dbus_message_get_type(message)
    #end message_get_type

    def message_get_path(self, message) :
        return \
            _decode(dbus.dbus_message_get_path(message))
    #end message_get_path

    def message_get_interface(self, message) :
        return \
            _decode(dbus.dbus_message_get_interface(message))
    #end message_get_interface

    def message_get_member(self, message) :
        return \
            _decode(dbus.dbus_message_get_member(message))
    #end message_get_member

    def message_get_error_name(self, message) :
        return \
            _decode(dbus.dbus_message_get_error_name(message))
    #end message_get_error_name

    def message_get_destination(self, message) :
        return \
            _decode(dbus.dbus_message_get_destination(message))
    #end message_get_destination

    def message_get_sender(self, message) :
        return \
            _decode(dbus.dbus_message_get_sender(message))
    #end message_get_sender

    def message_get_signature(self, message) :
        return \
            _decode(dbus.dbus_message_get_signature(message))
    #end message_get_signature

    def message_get_serial(self, message) :
        return \
            dbus.dbus_message_get_serial(message)
    #end message_get_serial

    def message_set_serial(self, message, serial) :
        dbus.dbus_message_set_serial(message, serial)
    #end message_set_serial

    def message_get_reply_serial(self, message) :
        return \
            dbus.dbus_message_get_reply_serial(message)
    #end message_get_reply_serial

    # message iterators

    def iter_init(self, message) :
        "returns a read iterator positioned at the first argument, or None if" \
        " the message has no arguments."
        iter = NATIVE.MessageIter()
        if dbus.dbus_message_iter_init(message, ct.byref(iter)) == 0 :
            iter = None
        #end if
        return \
            iter
    #end iter_init

    def iter_init_append(self, message) :
        iter = NATIVE.MessageIter()
        dbus.dbus_message_iter_init_append(message, ct.byref(iter))
        return \
            iter
    #end iter_init_append

    def iter_get_arg_type(self, iter) :
        return \
            dbus.dbus_message_iter_get_arg_type(ct.byref(iter))
    #end iter_get_arg_type

    def iter_get_signature(self, iter) :
        c_result = dbus.dbus_message_iter_get_signature(ct.byref(iter))
        if c_result == None :
            raise MemoryError("dbus_message_iter_get_signature: out of memory")
        #end if
        result = ct.cast(c_result, ct.c_char_p).value.decode()
        dbus.dbus_free(c_result)
        return \
            result
    #end iter_get_signature

    def iter_get_basic(self, iter) :
        argtype = self.iter_get_arg_type(iter)
        c_result_type = NATIVE.basic_to_ctypes[argtype]
        c_result = c_result_type()
        dbus.dbus_message_iter_get_basic(ct.byref(iter), ct.byref(c_result))
        if c_result_type == ct.c_char_p :
            result = c_result.value.decode()
        else :
            result = c_result.value
        #end if
        return \
            result
    #end iter_get_basic

    def iter_next(self, iter) :
        return \
            dbus.dbus_message_iter_next(ct.byref(iter)) != 0
    #end iter_next

    def iter_recurse(self, iter) :
        subiter = NATIVE.MessageIter()
        dbus.dbus_message_iter_recurse(ct.byref(iter), ct.byref(subiter))
        return \
            subiter
    #end iter_recurse

    def iter_append_basic(self, iter, type, value) :
        c_type = NATIVE.basic_to_ctypes[type]
        if c_type == ct.c_char_p :
            value = value.encode()
        #end if
        c_value = c_type(value)
        return \
            dbus.dbus_message_iter_append_basic(ct.byref(iter), type, ct.byref(c_value)) != 0
    #end iter_append_basic

    def iter_open_container(self, iter, type, contained_signature) :
        "returns the sub-iterator for appending the container contents, or None" \
        " if libdbus ran out of memory."
        subiter = NATIVE.MessageIter()
        c_sig = _encode(contained_signature)
        if not dbus.dbus_message_iter_open_container(ct.byref(iter), type, c_sig, ct.byref(subiter)) :
            subiter = None
        #end if
        return \
            subiter
    #end iter_open_container

    def iter_close_container(self, iter, subiter) :
        return \
            dbus.dbus_message_iter_close_container(ct.byref(iter), ct.byref(subiter)) != 0
    #end iter_close_container

    def iter_abandon_container(self, iter, subiter) :
        dbus.dbus_message_iter_abandon_container(ct.byref(iter), ct.byref(subiter))
    #end iter_abandon_container

#end LibDBus
