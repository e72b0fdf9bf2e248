"""
Client-side binding for D-Bus <https://www.freedesktop.org/wiki/Software/dbus/>:
typed D-Bus values, their marshalling into and out of message bodies, and
blocking method calls over a private bus connection. The native side (libdbus
<https://dbus.freedesktop.org/doc/api/html/index.html>, via the libdbus module)
is only loaded when first needed, so values and signatures can be used without
it.
"""
#+
# Copyright 2017 Lawrence D'Oliveiro <ldo@geek-central.gen.nz>.
# Licensed under the GNU Lesser General Public License v2.1 or later.
#-

import re
import struct
import logging
from weakref import \
    ref as weak_ref
import atexit

_log = logging.getLogger(__name__)

class DBUS :
    "useful definitions adapted from the D-Bus includes."

    # from dbus-protocol.h:

    # Type code that is never equal to a legitimate type code
    TYPE_INVALID = 0

    # Primitive types
    TYPE_BYTE = ord('y') # 8-bit unsigned integer
    TYPE_BOOLEAN = ord('b') # boolean
    TYPE_INT16 = ord('n') # 16-bit signed integer
    TYPE_UINT16 = ord('q') # 16-bit unsigned integer
    TYPE_INT32 = ord('i') # 32-bit signed integer
    TYPE_UINT32 = ord('u') # 32-bit unsigned integer
    TYPE_INT64 = ord('x') # 64-bit signed integer
    TYPE_UINT64 = ord('t') # 64-bit unsigned integer
    TYPE_DOUBLE = ord('d') # 8-byte double in IEEE 754 format
    TYPE_STRING = ord('s') # UTF-8 encoded, nul-terminated Unicode string
    TYPE_OBJECT_PATH = ord('o') # D-Bus object path
    TYPE_SIGNATURE = ord('g') # D-Bus type signature
    TYPE_UNIX_FD = ord('h') # unix file descriptor

    basic_types = frozenset \
      ((
        TYPE_BYTE,
        TYPE_BOOLEAN,
        TYPE_INT16,
        TYPE_UINT16,
        TYPE_INT32,
        TYPE_UINT32,
        TYPE_INT64,
        TYPE_UINT64,
        TYPE_DOUBLE,
        TYPE_STRING,
        TYPE_OBJECT_PATH,
        TYPE_SIGNATURE,
        TYPE_UNIX_FD,
      ))

    # Compound types
    TYPE_ARRAY = ord('a') # D-Bus array type
    TYPE_VARIANT = ord('v') # D-Bus variant type

    TYPE_STRUCT = ord('r') # a struct; however, type signatures use STRUCT_BEGIN/END_CHAR
    TYPE_DICT_ENTRY = ord('e') # a dict entry; however, type signatures use DICT_ENTRY_BEGIN/END_CHAR

    # characters other than typecodes that appear in type signatures
    STRUCT_BEGIN_CHAR = ord('(') # start of a struct type in a type signature
    STRUCT_END_CHAR = ord(')') # end of a struct type in a type signature
    DICT_ENTRY_BEGIN_CHAR = ord('{') # start of a dict entry type in a type signature
    DICT_ENTRY_END_CHAR = ord('}') # end of a dict entry type in a type signature

    MAXIMUM_NAME_LENGTH = 255 # max length in bytes of a bus name, interface or member (object paths are unlimited)

    MAXIMUM_SIGNATURE_LENGTH = 255 # fits in a byte

    MAXIMUM_TYPE_RECURSION_DEPTH = 32

    def int_subtype(i, bits, signed) :
        "returns integer i after checking that it fits in the given number of bits."
        if signed :
            lo = - 1 << bits - 1
            hi = (1 << bits - 1) - 1
        else :
            lo = 0
            hi = (1 << bits) - 1
        #end if
        if i < lo or i > hi :
            raise InvalidArgument \
              (
                "%d not in range of %s %d-bit value" % (i, ("unsigned", "signed")[signed], bits)
              )
        #end if
        return \
            i
    #end int_subtype

    # Types of message

    MESSAGE_TYPE_METHOD_CALL = 1
    MESSAGE_TYPE_METHOD_RETURN = 2
    MESSAGE_TYPE_ERROR = 3
    MESSAGE_TYPE_SIGNAL = 4

    # Errors
    ERROR_FAILED = "org.freedesktop.DBus.Error.Failed" # generic error
    ERROR_NO_REPLY = "org.freedesktop.DBus.Error.NoReply"
    ERROR_NO_SERVER = "org.freedesktop.DBus.Error.NoServer"
    ERROR_INVALID_ARGS = "org.freedesktop.DBus.Error.InvalidArgs"
    ERROR_UNKNOWN_METHOD = "org.freedesktop.DBus.Error.UnknownMethod"
    ERROR_INVALID_SIGNATURE = "org.freedesktop.DBus.Error.InvalidSignature"

    # from dbus-shared.h:

    # well-known bus types
    BUS_SESSION = 0
    BUS_SYSTEM = 1
    BUS_STARTER = 2

    # Bus names
    SERVICE_DBUS = "org.freedesktop.DBus" # used to talk to the bus itself

    # Paths
    PATH_DBUS = "/org/freedesktop/DBus" # object path used to talk to the bus itself

    # Interfaces
    INTERFACE_DBUS = "org.freedesktop.DBus" # interface exported by the object with SERVICE_DBUS and PATH_DBUS
    INTERFACE_PEER = "org.freedesktop.DBus.Peer" # interface supported by most dbus peers

    # from dbus-pending-call.h:
    TIMEOUT_USE_DEFAULT = -1

#end DBUS

#+
# Exceptions
#-

class DBusError(Exception) :
    "for raising an exception that reports a D-Bus error name and accompanying message."

    def __init__(self, name, message) :
        self.args = ("%s -- %s" % (name, message),)
        self.name = name
        self.message = message
    #end __init__

#end DBusError

class DBusFailure(DBusError) :
    "used internally for reporting general libdbus call failures."

    def __init__(self, message) :
        super().__init__(DBUS.ERROR_FAILED, message)
    #end __init__

#end DBusFailure

class InvalidArgument(DBusError, ValueError) :
    "raised when a value, name or signature is not acceptable to D-Bus."

    def __init__(self, message) :
        super().__init__(DBUS.ERROR_INVALID_ARGS, message)
    #end __init__

#end InvalidArgument

class DecodeError(DBusError) :
    "raised when a message body holds something that cannot be turned into a Value."

    def __init__(self, message) :
        super().__init__(DBUS.ERROR_INVALID_SIGNATURE, message)
    #end __init__

#end DecodeError

class ProtocolViolation(RuntimeError) :
    "the remote peer answered a method call with something that is neither a" \
    " method return nor an error. Not recoverable at this level."
    pass
#end ProtocolViolation

#+
# Access to the native library
#-

_lib = None

def get_lib() :
    "returns the object implementing the native D-Bus primitives, loading" \
    " libdbus the first time through if nothing else has been installed."
    global _lib
    if _lib == None :
        try :
            import libdbus
        except OSError as fail :
            raise DBusFailure("cannot load libdbus: %s" % fail) from fail
        #end try
        _lib = libdbus.LibDBus()
    #end if
    return \
        _lib
#end get_lib

def set_lib(lib) :
    "installs lib as the provider of native D-Bus primitives for objects created" \
    " from now on. Returns the previous provider, which may be None."
    global _lib
    previous = _lib
    _lib = lib
    return \
        previous
#end set_lib

def _check_memory(result, what) :
    # libdbus only returns NULL from its allocating calls when it has run out of memory.
    if result == None :
        raise MemoryError("%s: out of memory" % what)
    #end if
    return \
        result
#end _check_memory

#+
# Syntax validation
#-

_path_element = re.compile(r"^[A-Za-z0-9_]+$")
_name_element = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_bus_name_element = re.compile(r"^[A-Za-z_-][A-Za-z0-9_-]*$")
_unique_name_element = re.compile(r"^[A-Za-z0-9_-]+$")

def _validated(valid, what, raise_if_invalid) :
    if not valid and raise_if_invalid :
        raise InvalidArgument("invalid %s" % what)
    #end if
    return \
        valid
#end _validated

def validate_path(path, raise_if_invalid = True) :
    "is path a syntactically valid object path."
    valid = \
        (
            isinstance(path, str)
        and
            path.startswith("/")
        and
            (
                path == "/"
            or
                all(_path_element.match(elt) != None for elt in path[1:].split("/"))
            )
        )
    return \
        _validated(valid, "object path %r" % (path,), raise_if_invalid)
#end validate_path

def validate_interface(name, raise_if_invalid = True) :
    "is name a syntactically valid interface name."
    valid = \
        (
            isinstance(name, str)
        and
            len(name.encode()) <= DBUS.MAXIMUM_NAME_LENGTH
        and
            len(name.split(".")) >= 2
        and
            all(_name_element.match(elt) != None for elt in name.split("."))
        )
    return \
        _validated(valid, "interface name %r" % (name,), raise_if_invalid)
#end validate_interface

def validate_member(name, raise_if_invalid = True) :
    "is name a syntactically valid method or signal name."
    valid = \
        (
            isinstance(name, str)
        and
            len(name.encode()) <= DBUS.MAXIMUM_NAME_LENGTH
        and
            _name_element.match(name) != None
        )
    return \
        _validated(valid, "member name %r" % (name,), raise_if_invalid)
#end validate_member

def validate_error_name(name, raise_if_invalid = True) :
    "error names follow the same rules as interface names."
    valid = validate_interface(name, raise_if_invalid = False)
    return \
        _validated(valid, "error name %r" % (name,), raise_if_invalid)
#end validate_error_name

def validate_bus_name(name, raise_if_invalid = True) :
    "is name a syntactically valid unique or well-known bus name."
    valid = isinstance(name, str) and len(name.encode()) <= DBUS.MAXIMUM_NAME_LENGTH
    if valid :
        if name.startswith(":") :
            elements = name[1:].split(".")
            element_pat = _unique_name_element
        else :
            elements = name.split(".")
            element_pat = _bus_name_element
        #end if
        valid = \
            (
                len(elements) >= 2
            and
                all(element_pat.match(elt) != None for elt in elements)
            )
    #end if
    return \
        _validated(valid, "bus name %r" % (name,), raise_if_invalid)
#end validate_bus_name

def _parse_single_type(signature, pos, array_depth, struct_depth, in_array) :
    # parses one complete type beginning at signature[pos], returning the
    # position just after it. Raises InvalidArgument on malformed input.
    # Array nesting and struct nesting (dict entries count as structs) are
    # limited separately.
    if array_depth > DBUS.MAXIMUM_TYPE_RECURSION_DEPTH :
        raise InvalidArgument("signature %r has arrays nested too deeply" % signature)
    #end if
    if struct_depth > DBUS.MAXIMUM_TYPE_RECURSION_DEPTH :
        raise InvalidArgument("signature %r has structs nested too deeply" % signature)
    #end if
    if pos >= len(signature) :
        raise InvalidArgument("signature %r ends prematurely" % signature)
    #end if
    code = ord(signature[pos])
    if code in DBUS.basic_types or code == DBUS.TYPE_VARIANT :
        pos += 1
    elif code == DBUS.TYPE_ARRAY :
        pos = _parse_single_type(signature, pos + 1, array_depth + 1, struct_depth, True)
    elif code == DBUS.STRUCT_BEGIN_CHAR :
        pos += 1
        if pos < len(signature) and ord(signature[pos]) == DBUS.STRUCT_END_CHAR :
            raise InvalidArgument("empty struct in signature %r" % signature)
        #end if
        while True :
            if pos >= len(signature) :
                raise InvalidArgument("unterminated struct in signature %r" % signature)
            #end if
            if ord(signature[pos]) == DBUS.STRUCT_END_CHAR :
                pos += 1
                break
            #end if
            pos = _parse_single_type(signature, pos, array_depth, struct_depth + 1, False)
        #end while
    elif code == DBUS.DICT_ENTRY_BEGIN_CHAR :
        if not in_array :
            raise InvalidArgument("dict entry not inside array in signature %r" % signature)
        #end if
        pos += 1
        if pos >= len(signature) or ord(signature[pos]) not in DBUS.basic_types :
            raise InvalidArgument("dict entry key must be a basic type in signature %r" % signature)
        #end if
        pos = _parse_single_type(signature, pos + 1, array_depth, struct_depth + 1, False)
        if pos >= len(signature) or ord(signature[pos]) != DBUS.DICT_ENTRY_END_CHAR :
            raise InvalidArgument("dict entry must have exactly 2 types in signature %r" % signature)
        #end if
        pos += 1
    else :
        raise InvalidArgument("unrecognized type code %r in signature %r" % (signature[pos], signature))
    #end if
    return \
        pos
#end _parse_single_type

def split_signature(signature) :
    "splits a signature into a list of its single complete types. Raises" \
    " InvalidArgument if it is not a valid signature."
    if not isinstance(signature, str) :
        raise InvalidArgument("signature must be a string")
    #end if
    if len(signature.encode()) > DBUS.MAXIMUM_SIGNATURE_LENGTH :
        raise InvalidArgument("signature %r too long" % signature)
    #end if
    result = []
    pos = 0
    while pos < len(signature) :
        endpos = _parse_single_type(signature, pos, 0, 0, False)
        result.append(signature[pos:endpos])
        pos = endpos
    #end while
    return \
        result
#end split_signature

def signature_validate(signature, raise_if_invalid = True) :
    "is signature a valid sequence of zero or more complete types."
    try :
        split_signature(signature)
        valid = True
    except InvalidArgument :
        if raise_if_invalid :
            raise
        #end if
        valid = False
    #end try
    return \
        valid
#end signature_validate

def signature_validate_single(signature, raise_if_invalid = True) :
    "is signature a single valid type."
    try :
        valid = len(split_signature(signature)) == 1
    except InvalidArgument :
        if raise_if_invalid :
            raise
        #end if
        valid = False
    #end try
    return \
        _validated(valid, "single-type signature %r" % (signature,), raise_if_invalid)
#end signature_validate_single

#+
# Values
#-

class Value :
    "base class for all D-Bus values. Values are plain data: construct them" \
    " directly, and they will check their contents are acceptable to D-Bus."

    __slots__ = () # to forestall typos

    type_code = None

    @property
    def signature(self) :
        "the type signature for this value, as it would appear in a message."
        return \
            chr(self.type_code)
    #end signature

    def _key(self) :
        raise NotImplementedError("subclass forgot to override _key")
    #end _key

    def __eq__(self, other) :
        return \
            type(self) == type(other) and self._key() == other._key()
    #end __eq__

    def __hash__(self) :
        return \
            hash((type(self), self._key()))
    #end __hash__

#end Value

class BasicValue(Value) :
    "base class for the non-container D-Bus types."

    __slots__ = ("value",)

    def __init__(self, value) :
        self.value = self._convert(value)
    #end __init__

    @classmethod
    def _convert(celf, value) :
        return \
            value
    #end _convert

    def _key(self) :
        return \
            self.value
    #end _key

    def __repr__(self) :
        return \
            "%s(%r)" % (type(self).__name__, self.value)
    #end __repr__

#end BasicValue

class _IntegerValue(BasicValue) :

    __slots__ = ()

    bits = None
    signed = None

    @classmethod
    def _convert(celf, value) :
        if isinstance(value, bool) or not isinstance(value, int) :
            raise InvalidArgument("%s value must be an int, not %r" % (celf.__name__, value))
        #end if
        return \
            DBUS.int_subtype(value, celf.bits, celf.signed)
    #end _convert

#end _IntegerValue

class Byte(_IntegerValue) :
    "an 8-bit unsigned integer."
    __slots__ = ()
    type_code = DBUS.TYPE_BYTE
    bits = 8
    signed = False
#end Byte

class Int16(_IntegerValue) :
    __slots__ = ()
    type_code = DBUS.TYPE_INT16
    bits = 16
    signed = True
#end Int16

class UInt16(_IntegerValue) :
    __slots__ = ()
    type_code = DBUS.TYPE_UINT16
    bits = 16
    signed = False
#end UInt16

class Int32(_IntegerValue) :
    __slots__ = ()
    type_code = DBUS.TYPE_INT32
    bits = 32
    signed = True
#end Int32

class UInt32(_IntegerValue) :
    __slots__ = ()
    type_code = DBUS.TYPE_UINT32
    bits = 32
    signed = False
#end UInt32

class Int64(_IntegerValue) :
    __slots__ = ()
    type_code = DBUS.TYPE_INT64
    bits = 64
    signed = True
#end Int64

class UInt64(_IntegerValue) :
    __slots__ = ()
    type_code = DBUS.TYPE_UINT64
    bits = 64
    signed = False
#end UInt64

class Boolean(BasicValue) :
    "a truth value. Accepts bools, or the ints 0 and 1."

    __slots__ = ()

    type_code = DBUS.TYPE_BOOLEAN

    @classmethod
    def _convert(celf, value) :
        if not isinstance(value, int) or value not in (0, 1) :
            raise InvalidArgument("Boolean value must be a bool, not %r" % (value,))
        #end if
        return \
            bool(value)
    #end _convert

#end Boolean

class Double(BasicValue) :
    "an IEEE 754 double. Doubles compare equal when their bit patterns are" \
    " identical, so a NaN equals itself and 0.0 differs from -0.0."

    __slots__ = ()

    type_code = DBUS.TYPE_DOUBLE

    @classmethod
    def _convert(celf, value) :
        if isinstance(value, bool) or not isinstance(value, (int, float)) :
            raise InvalidArgument("Double value must be a number, not %r" % (value,))
        #end if
        return \
            float(value)
    #end _convert

    def _key(self) :
        return \
            struct.pack("<d", self.value)
    #end _key

#end Double

class String(BasicValue) :
    "a Unicode string. D-Bus does not allow embedded nul characters."

    __slots__ = ()

    type_code = DBUS.TYPE_STRING

    @classmethod
    def _convert(celf, value) :
        if not isinstance(value, str) :
            raise InvalidArgument("%s value must be a str, not %r" % (celf.__name__, value))
        #end if
        if "\0" in value :
            raise InvalidArgument("%s value may not contain nul characters" % celf.__name__)
        #end if
        try :
            value.encode()
        except UnicodeEncodeError as fail :
            raise InvalidArgument("%s value is not valid Unicode: %s" % (celf.__name__, fail)) from fail
        #end try
        return \
            value
    #end _convert

#end String

class ObjectPath(String) :
    "an object path string."

    __slots__ = ()

    type_code = DBUS.TYPE_OBJECT_PATH

    @classmethod
    def _convert(celf, value) :
        value = super()._convert(value)
        validate_path(value)
        return \
            value
    #end _convert

#end ObjectPath

class Signature(String) :
    "a type-signature string."

    __slots__ = ()

    type_code = DBUS.TYPE_SIGNATURE

    @classmethod
    def _convert(celf, value) :
        value = super()._convert(value)
        signature_validate(value)
        return \
            value
    #end _convert

#end Signature

class ContainerValue(Value) :
    "base class for arrays, structs, dict entries and variants."

    __slots__ = ()

    @property
    def contained_signature(self) :
        "the signature to pass when opening this container on a message iterator."
        return \
            None
    #end contained_signature

    @property
    def children(self) :
        "the values inside this container, in the order they go in the message."
        raise NotImplementedError("subclass forgot to override children")
    #end children

#end ContainerValue

def _check_values(values, what) :
    values = tuple(values)
    for val in values :
        if not isinstance(val, Value) :
            raise InvalidArgument("%s must be made of Value objects, not %r" % (what, val))
        #end if
    #end for
    return \
        values
#end _check_values

class Array(ContainerValue) :
    "a sequence of values which all have the same signature. element_signature" \
    " may be omitted as long as there is at least one element to take it from."

    __slots__ = ("elements", "element_signature")

    type_code = DBUS.TYPE_ARRAY

    def __init__(self, elements = (), element_signature = None) :
        elements = _check_values(elements, "Array")
        if element_signature == None :
            if len(elements) == 0 :
                raise InvalidArgument("empty Array needs an explicit element signature")
            #end if
            element_signature = elements[0].signature
        #end if
        signature_validate_single(chr(DBUS.TYPE_ARRAY) + element_signature)
        for elt in elements :
            if elt.signature != element_signature :
                raise InvalidArgument \
                  (
                        "Array element signature %r does not match %r"
                    %
                        (elt.signature, element_signature)
                  )
            #end if
        #end for
        self.elements = elements
        self.element_signature = element_signature
    #end __init__

    @property
    def signature(self) :
        return \
            chr(DBUS.TYPE_ARRAY) + self.element_signature
    #end signature

    @property
    def contained_signature(self) :
        return \
            self.element_signature
    #end contained_signature

    @property
    def children(self) :
        return \
            self.elements
    #end children

    @property
    def is_dict(self) :
        "is this an array of dict entries."
        return \
            ord(self.element_signature[0]) == DBUS.DICT_ENTRY_BEGIN_CHAR
    #end is_dict

    def __len__(self) :
        return \
            len(self.elements)
    #end __len__

    def __iter__(self) :
        return \
            iter(self.elements)
    #end __iter__

    def __getitem__(self, i) :
        return \
            self.elements[i]
    #end __getitem__

    def _key(self) :
        return \
            (self.element_signature, self.elements)
    #end _key

    def __repr__(self) :
        return \
            "Array(%r, %r)" % (list(self.elements), self.element_signature)
    #end __repr__

#end Array

class Struct(ContainerValue) :
    "an ordered collection of one or more values of any types."

    __slots__ = ("members",)

    type_code = DBUS.TYPE_STRUCT

    def __init__(self, members) :
        members = _check_values(members, "Struct")
        if len(members) == 0 :
            raise InvalidArgument("Struct must have at least one member")
        #end if
        self.members = members
    #end __init__

    @property
    def signature(self) :
        return \
            (
                chr(DBUS.STRUCT_BEGIN_CHAR)
            +
                "".join(member.signature for member in self.members)
            +
                chr(DBUS.STRUCT_END_CHAR)
            )
    #end signature

    @property
    def children(self) :
        return \
            self.members
    #end children

    def __len__(self) :
        return \
            len(self.members)
    #end __len__

    def __iter__(self) :
        return \
            iter(self.members)
    #end __iter__

    def __getitem__(self, i) :
        return \
            self.members[i]
    #end __getitem__

    def _key(self) :
        return \
            self.members
    #end _key

    def __repr__(self) :
        return \
            "Struct(%r)" % list(self.members)
    #end __repr__

#end Struct

class DictEntry(ContainerValue) :
    "a key-value pair; only meaningful as an element of an Array. The key" \
    " must be of a basic (non-container) type."

    __slots__ = ("key", "value")

    type_code = DBUS.TYPE_DICT_ENTRY

    def __init__(self, key, value) :
        if not isinstance(key, BasicValue) :
            raise InvalidArgument("DictEntry key must be a basic value, not %r" % (key,))
        #end if
        if not isinstance(value, Value) :
            raise InvalidArgument("DictEntry value must be a Value, not %r" % (value,))
        #end if
        self.key = key
        self.value = value
    #end __init__

    @property
    def signature(self) :
        return \
            (
                chr(DBUS.DICT_ENTRY_BEGIN_CHAR)
            +
                self.key.signature
            +
                self.value.signature
            +
                chr(DBUS.DICT_ENTRY_END_CHAR)
            )
    #end signature

    @property
    def children(self) :
        return \
            (self.key, self.value)
    #end children

    def _key(self) :
        return \
            (self.key, self.value)
    #end _key

    def __repr__(self) :
        return \
            "DictEntry(%r, %r)" % (self.key, self.value)
    #end __repr__

#end DictEntry

class Variant(ContainerValue) :
    "a box holding a single value of any type. Its own signature is always" \
    " \"v\"; the signature of the boxed value is available as inner_signature." \
    " If signature is given, it must agree with that of value."

    __slots__ = ("value",)

    type_code = DBUS.TYPE_VARIANT

    def __init__(self, value, signature = None) :
        if not isinstance(value, Value) :
            raise InvalidArgument("Variant contents must be a Value, not %r" % (value,))
        #end if
        signature_validate_single(value.signature)
        if signature != None and signature != value.signature :
            raise InvalidArgument \
              (
                "Variant signature %r does not match its value %r" % (signature, value.signature)
              )
        #end if
        self.value = value
    #end __init__

    @property
    def inner_signature(self) :
        return \
            self.value.signature
    #end inner_signature

    @property
    def contained_signature(self) :
        return \
            self.inner_signature
    #end contained_signature

    @property
    def children(self) :
        return \
            (self.value,)
    #end children

    def _key(self) :
        return \
            (self.inner_signature, self.value)
    #end _key

    def __repr__(self) :
        return \
            "Variant(%r)" % (self.value,)
    #end __repr__

#end Variant

_basic_classes = \
    {
        DBUS.TYPE_BYTE : Byte,
        DBUS.TYPE_BOOLEAN : Boolean,
        DBUS.TYPE_INT16 : Int16,
        DBUS.TYPE_UINT16 : UInt16,
        DBUS.TYPE_INT32 : Int32,
        DBUS.TYPE_UINT32 : UInt32,
        DBUS.TYPE_INT64 : Int64,
        DBUS.TYPE_UINT64 : UInt64,
        DBUS.TYPE_DOUBLE : Double,
        DBUS.TYPE_STRING : String,
        DBUS.TYPE_OBJECT_PATH : ObjectPath,
        DBUS.TYPE_SIGNATURE : Signature,
    }

def unwrap(value) :
    "converts a Value into ordinary Python objects: basic values become their" \
    " payloads, arrays of dict entries become dicts, other arrays become lists," \
    " structs and dict entries become tuples, and variants are unboxed."
    if isinstance(value, BasicValue) :
        result = value.value
    elif isinstance(value, Array) :
        if value.is_dict :
            result = dict((unwrap(elt.key), unwrap(elt.value)) for elt in value.elements)
        else :
            result = list(unwrap(elt) for elt in value.elements)
        #end if
    elif isinstance(value, (Struct, DictEntry)) :
        result = tuple(unwrap(elt) for elt in value.children)
    elif isinstance(value, Variant) :
        result = unwrap(value.value)
    else :
        raise TypeError("not a Value: %r" % (value,))
    #end if
    return \
        result
#end unwrap

#+
# Marshalling between Values and message iterators
#-

def _append_value(lib, appenditer, val) :
    if isinstance(val, BasicValue) :
        if not lib.iter_append_basic(appenditer, val.type_code, val.value) :
            raise MemoryError("iter_append_basic: out of memory")
        #end if
    else :
        subiter = _check_memory \
          (
            lib.iter_open_container(appenditer, val.type_code, val.contained_signature),
            "iter_open_container"
          )
        try :
            for child in val.children :
                _append_value(lib, subiter, child)
            #end for
        except BaseException :
            lib.iter_abandon_container(appenditer, subiter)
            raise
        #end try
        if not lib.iter_close_container(appenditer, subiter) :
            raise MemoryError("iter_close_container: out of memory")
        #end if
    #end if
#end _append_value

def copy_to_iter(lib, appenditer, values) :
    "appends the Values in sequence values, in order, via the append iterator" \
    " appenditer. The combined signature is checked before anything is written."
    values = _check_values(values, "message arguments")
    signature_validate("".join(val.signature for val in values))
    for val in values :
        _append_value(lib, appenditer, val)
    #end for
#end copy_to_iter

def _get_value(lib, iter, argtype) :
    if argtype in _basic_classes :
        result = _basic_classes[argtype](lib.iter_get_basic(iter))
    elif argtype == DBUS.TYPE_ARRAY :
        element_signature = lib.iter_get_signature(iter)[1:]
        result = Array(from_iter(lib, lib.iter_recurse(iter)), element_signature)
    elif argtype == DBUS.TYPE_STRUCT :
        result = Struct(from_iter(lib, lib.iter_recurse(iter)))
    elif argtype == DBUS.TYPE_DICT_ENTRY :
        items = from_iter(lib, lib.iter_recurse(iter))
        if len(items) != 2 :
            raise DecodeError("dict entry holds %d items instead of 2" % len(items))
        #end if
        result = DictEntry(*items)
    elif argtype == DBUS.TYPE_VARIANT :
        items = from_iter(lib, lib.iter_recurse(iter))
        if len(items) != 1 :
            raise DecodeError("variant holds %d items instead of 1" % len(items))
        #end if
        result = Variant(items[0])
    else :
        raise DecodeError("unrecognized argument type %d (%r)" % (argtype, chr(argtype)))
    #end if
    return \
        result
#end _get_value

def from_iter(lib, iter) :
    "returns a list of the Values from the current position of read iterator" \
    " iter to the end of its containing level, recursing into containers. iter" \
    " may be None, meaning there is nothing to read. Unrecognized type codes" \
    " raise DecodeError."
    result = []
    if iter != None :
        while True :
            argtype = lib.iter_get_arg_type(iter)
            if argtype == DBUS.TYPE_INVALID :
                break
            #end if
            result.append(_get_value(lib, iter, argtype))
            if not lib.iter_next(iter) :
                break
            #end if
        #end while
    #end if
    return \
        result
#end from_iter

#+
# Native-resource wrappers
#-

class Error :
    "wrapper around a native DBusError record. Create an empty one with" \
    " Error.empty(), pass it to a native call, then check is_set."

    __slots__ = ("_dbobj", "_lib") # to forestall typos

    def __init__(self, _lib = None) :
        self._dbobj = None
        if _lib == None :
            _lib = get_lib()
        #end if
        self._lib = _lib
        self._dbobj = _lib.error_init()
    #end __init__

    def __del__(self) :
        self.free()
    #end __del__

    def free(self) :
        "releases the native record. Only the first call has any effect."
        if self._dbobj != None :
            self._lib.error_free(self._dbobj)
            self._dbobj = None
        #end if
    #end free

    @classmethod
    def empty(celf) :
        "returns a new, unset Error."
        return \
            celf()
    #end empty

    @property
    def is_set(self) :
        return \
            self._dbobj != None and self._lib.error_is_set(self._dbobj)
    #end is_set

    @property
    def name(self) :
        assert self.is_set, "error has not been set"
        return \
            self._lib.error_name(self._dbobj)
    #end name

    @property
    def message(self) :
        assert self.is_set, "error has not been set"
        return \
            self._lib.error_message(self._dbobj)
    #end message

    def raise_if_set(self) :
        if self.is_set :
            raise DBusError(self.name, self.message)
        #end if
    #end raise_if_set

    def set_from_message(self, message) :
        "fills in this Error object from message if it is an error message." \
        " Returns whether it was or not."
        if not isinstance(message, Message) :
            raise TypeError("message must be a Message")
        #end if
        return \
            self._lib.set_error_from_message(self._dbobj, message._dbobj)
    #end set_from_message

#end Error

class Message :
    "wrapper around a native DBusMessage handle, which it owns. Do not instantiate" \
    " directly; use MethodCall.new or the reply-creating methods of MethodCall," \
    " or take the result of Connection.call_method_sync."

    __slots__ = ("_dbobj", "_lib") # to forestall typos

    def __init__(self, _dbobj, _lib) :
        self._dbobj = None
        self._lib = _lib
        self._dbobj = _check_memory(_dbobj, "new %s" % type(self).__name__)
    #end __init__

    def __del__(self) :
        self.release()
    #end __del__

    def release(self) :
        "gives up the native message. Only the first call has any effect."
        if self._dbobj != None :
            self._lib.message_unref(self._dbobj)
            self._dbobj = None
        #end if
    #end release

    @property
    def type(self) :
        "one of the DBUS.MESSAGE_TYPE_xxx codes."
        return \
            self._lib.message_get_type(self._dbobj)
    #end type

    @property
    def path(self) :
        return \
            self._lib.message_get_path(self._dbobj)
    #end path

    @property
    def interface(self) :
        return \
            self._lib.message_get_interface(self._dbobj)
    #end interface

    @property
    def member(self) :
        return \
            self._lib.message_get_member(self._dbobj)
    #end member

    @property
    def destination(self) :
        return \
            self._lib.message_get_destination(self._dbobj)
    #end destination

    @property
    def sender(self) :
        return \
            self._lib.message_get_sender(self._dbobj)
    #end sender

    @property
    def error_name(self) :
        return \
            self._lib.message_get_error_name(self._dbobj)
    #end error_name

    @property
    def signature(self) :
        "the signature of the message body."
        return \
            self._lib.message_get_signature(self._dbobj)
    #end signature

    @property
    def serial(self) :
        return \
            self._lib.message_get_serial(self._dbobj)
    #end serial

    @serial.setter
    def serial(self, serial) :
        "normally assigned by the connection when the message is sent."
        if isinstance(serial, bool) or not isinstance(serial, int) or serial == 0 :
            raise InvalidArgument("message serial must be a nonzero int, not %r" % (serial,))
        #end if
        self._lib.message_set_serial(self._dbobj, DBUS.int_subtype(serial, 32, False))
    #end serial

    @property
    def reply_serial(self) :
        return \
            self._lib.message_get_reply_serial(self._dbobj)
    #end reply_serial

    def append_items(self, values) :
        "appends the given sequence of Values to the message body."
        copy_to_iter(self._lib, self._lib.iter_init_append(self._dbobj), values)
        return \
            self
    #end append_items

    def get_items(self) :
        "returns the message body as a list of Values; empty if there is none."
        return \
            from_iter(self._lib, self._lib.iter_init(self._dbobj))
    #end get_items

    def __repr__(self) :
        return \
            "<%s %r>" % (type(self).__name__, self.signature)
    #end __repr__

#end Message

class MethodCall(Message) :
    "a method-call message."

    __slots__ = ()

    @classmethod
    def new(celf, destination, path, interface, method, lib = None) :
        "creates a new method call. destination may be empty for a peer-to-peer" \
        " call, and interface may be empty if the method name is unambiguous;" \
        " path and method must be filled in."
        if lib == None :
            lib = get_lib()
        #end if
        if destination :
            validate_bus_name(destination)
        #end if
        validate_path(path)
        if interface :
            validate_interface(interface)
        #end if
        validate_member(method)
        return \
            celf \
              (
                lib.message_new_method_call
                  (
                    (lambda : None, lambda : destination)[bool(destination)](),
                    path,
                    (lambda : None, lambda : interface)[bool(interface)](),
                    method
                  ),
                lib
              )
    #end new

    def _check_sent(self) :
        # libdbus aborts the process if asked to reply to serial 0.
        if self.serial == 0 :
            raise InvalidArgument("cannot reply to a message that has not been sent")
        #end if
    #end _check_sent

    def new_response(self) :
        "creates a new MethodReturn replying to this call, which must have been" \
        " sent (or otherwise given a serial number)."
        self._check_sent()
        return \
            MethodReturn(self._lib.message_new_method_return(self._dbobj), self._lib)
    #end new_response

    def respond_with(self, values) :
        "creates a new MethodReturn replying to this call, holding the given Values."
        response = self.new_response()
        response.append_items(values)
        return \
            response
    #end respond_with

    def new_error(self, name, message) :
        "creates a new ErrorReply to this call. An empty name is replaced" \
        " with DBUS.ERROR_FAILED."
        if not name :
            name = DBUS.ERROR_FAILED
        #end if
        self._check_sent()
        validate_error_name(name)
        return \
            ErrorReply(self._lib.message_new_error(self._dbobj, name, message), self._lib)
    #end new_error

#end MethodCall

class MethodReturn(Message) :
    "a successful reply to a method call."
    __slots__ = ()
#end MethodReturn

class ErrorReply(Message) :
    "an error reply to a method call."

    __slots__ = ()

    def as_error(self) :
        "returns a DBusError reporting the error name and message in this reply."
        items = self.get_items()
        if len(items) != 0 and isinstance(items[0], String) :
            message = items[0].value
        else :
            message = ""
        #end if
        return \
            DBusError(self.error_name, message)
    #end as_error

#end ErrorReply

class Connection :
    "wrapper around a private connection to a message bus. Do not instantiate" \
    " directly; use new or new_for_type.\n" \
    "\n" \
    "Only one call may be in flight on a Connection at a time; issuing another" \
    " call on the same Connection before the first returns (for example from" \
    " another thread) is not supported. Separate Connections share nothing and" \
    " can be used from separate threads."

    __slots__ = ("__weakref__", "_dbobj", "_lib", "_in_call") # to forestall typos

    def __init__(self, _dbobj, _lib) :
        self._dbobj = _dbobj
        self._lib = _lib
        self._in_call = False
    #end __init__

    def __del__(self) :
        self.close()
    #end __del__

    @classmethod
    def new_for_type(celf, bus_kind) :
        "opens a new private connection to the bus identified by bus_kind, which" \
        " is one of DBUS.BUS_SESSION, DBUS.BUS_SYSTEM or DBUS.BUS_STARTER. Raises" \
        " DBusError if the bus cannot be reached."
        if bus_kind not in (DBUS.BUS_SESSION, DBUS.BUS_SYSTEM, DBUS.BUS_STARTER) :
            raise InvalidArgument("unknown bus kind %r" % (bus_kind,))
        #end if
        lib = get_lib()
        error = Error(lib)
        c_conn = lib.bus_get_private(bus_kind, error._dbobj)
        if c_conn == None :
            error.raise_if_set()
            raise DBusFailure("bus_get_private failed")
        #end if
        # a lost bus must be reported to the caller, not end the process
        lib.connection_set_exit_on_disconnect(c_conn, False)
        _log.debug("opened private connection to bus %d", bus_kind)
        return \
            celf(c_conn, lib)
    #end new_for_type

    @classmethod
    def new(celf) :
        "opens a new private connection to the session bus."
        return \
            celf.new_for_type(DBUS.BUS_SESSION)
    #end new

    def close(self) :
        "closes the connection and lets go of it. Only the first call has any effect."
        if self._dbobj != None :
            self._lib.connection_close(self._dbobj)
            self._lib.connection_unref(self._dbobj)
            self._dbobj = None
            _log.debug("closed connection")
        #end if
    #end close

    def __enter__(self) :
        return \
            self
    #end __enter__

    def __exit__(self, exception_type, exception_value, traceback) :
        self.close()
    #end __exit__

    @property
    def is_open(self) :
        return \
            self._dbobj != None
    #end is_open

    @property
    def unique_name(self) :
        "the unique name the bus assigned to this connection."
        assert self._dbobj != None, "connection is closed"
        return \
            self._lib.bus_get_unique_name(self._dbobj)
    #end unique_name

    def call_method_sync(self, destination, path, interface, method, args = ()) :
        "calls a method and waits for its reply, using the library default timeout.\n" \
        "\n" \
        "destination may be empty for a peer-to-peer call; interface may be empty" \
        " if the method name is unambiguous; path and method must be filled in." \
        " args is a sequence of Values.\n" \
        "\n" \
        "Returns a MethodReturn. An error reply, a send failure or a timeout is" \
        " raised as DBusError; a reply of any other type raises ProtocolViolation."
        assert self._dbobj != None, "connection is closed"
        assert not self._in_call, "another call is already in flight on this connection"
        message = MethodCall.new(destination, path, interface, method, lib = self._lib)
        message.append_items(args)
        error = Error(self._lib)
        _log.debug("calling %s.%s on %s at %s", interface, method, destination, path)
        self._in_call = True
        try :
            c_reply = self._lib.connection_send_with_reply_and_block \
              (
                self._dbobj,
                message._dbobj,
                DBUS.TIMEOUT_USE_DEFAULT,
                error._dbobj
              )
        finally :
            self._in_call = False
            message.release()
        #end try
        if c_reply == None :
            error.raise_if_set()
            raise DBusError(DBUS.ERROR_NO_REPLY, "no reply to %s" % method)
        #end if
        reply_type = self._lib.message_get_type(c_reply)
        _log.debug("%s reply has type %d", method, reply_type)
        if reply_type == DBUS.MESSAGE_TYPE_METHOD_RETURN :
            result = MethodReturn(c_reply, self._lib)
        elif reply_type == DBUS.MESSAGE_TYPE_ERROR :
            reply = ErrorReply(c_reply, self._lib)
            error.set_from_message(reply)
            reply.release()
            error.raise_if_set()
            raise DBusError(DBUS.ERROR_FAILED, "unreadable error reply to %s" % method)
        else :
            Message(c_reply, self._lib).release()
            raise ProtocolViolation \
              (
                "method call received non-method-return value in response: type %d" % reply_type
              )
        #end if
        return \
            result
    #end call_method_sync

    def stub(self, destination, path) :
        "returns an Object for making repeated calls to the given destination and path."
        return \
            Object(self, destination, path)
    #end stub

#end Connection

class Object :
    "a destination and object path bound to a Connection, so repeated calls" \
    " need not specify them each time. Holds only a weak reference to the" \
    " Connection, which must stay open for as long as the Object is used."

    __slots__ = ("_conn", "destination", "path") # to forestall typos

    def __init__(self, conn, destination, path) :
        if not isinstance(conn, Connection) :
            raise TypeError("conn must be a Connection")
        #end if
        self._conn = weak_ref(conn)
        if not isinstance(destination, str) or not isinstance(path, str) :
            raise TypeError("destination and path must be strings")
        #end if
        self.destination = destination
        self.path = path
    #end __init__

    @property
    def connection(self) :
        conn = self._conn()
        assert conn != None and conn.is_open, "connection for this object has been closed"
        return \
            conn
    #end connection

    def call_full(self, interface, method, args = ()) :
        "calls the named method in the given interface on this object."
        return \
            self.connection.call_method_sync(self.destination, self.path, interface, method, args)
    #end call_full

    def call(self, method, args = ()) :
        "calls a method without naming its interface."
        return \
            self.call_full("", method, args)
    #end call

    def ping(self) :
        "checks that the peer owning this object is responding."
        self.call_full(DBUS.INTERFACE_PEER, "Ping")
    #end ping

    def __repr__(self) :
        return \
            "Object(%r, %r)" % (self.destination, self.path)
    #end __repr__

#end Object

def session_bus() :
    "returns a new private Connection to the session bus."
    return \
        Connection.new_for_type(DBUS.BUS_SESSION)
#end session_bus

def system_bus() :
    "returns a new private Connection to the system bus."
    return \
        Connection.new_for_type(DBUS.BUS_SYSTEM)
#end system_bus

def starter_bus() :
    "returns a new private Connection to the bus that started this process."
    return \
        Connection.new_for_type(DBUS.BUS_STARTER)
#end starter_bus

#+
# Cleanup
#-

def _atexit() :
    # disable all __del__ methods at process termination to avoid segfaults
    for cls in Connection, Message, Error :
        delattr(cls, "__del__")
    #end for
#end _atexit
atexit.register(_atexit)
del _atexit
