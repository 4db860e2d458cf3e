# Parser layout follows the Kaitai Struct DEX description (https://formats.kaitai.io/dex/), but tables are read
# eagerly so that every cross-reference is checked at load time, and code items can be written back into the image.
import logging
from enum import IntFlag
from typing import Dict, List, Optional

import kaitaistruct
from kaitaistruct import KaitaiStruct, KaitaiStream

from .errors import BadHeaderSizeError, BadMagicError, IndexOutOfRangeError, TruncatedError
from .helpers import decode_mutf8, units_to_bytes, write_file_atomic
from .integrity import update_integrity, verify_integrity
from .leb128 import Uleb128

if getattr(kaitaistruct, "API_VERSION", (0, 9)) < (0, 9):
    raise Exception(
        "Incompatible Kaitai Struct Python API: 0.9 or later is required, but you have %s" % (kaitaistruct.__version__))

log = logging.getLogger(__name__)

DEX_MAGIC = b"dex\n"
HEADER_SIZE = 0x70
CODE_ITEM_HEADER_SIZE = 16
NO_INDEX = 0xFFFFFFFF


def _check_index(table: str, index: int, size: int) -> None:
    if index >= size:
        raise IndexOutOfRangeError(table, index, size)


def _check_extent(what: str, offset: int, length: int, size: int) -> None:
    if offset + length > size:
        raise TruncatedError(what, offset, offset + length, size)


class Dex(KaitaiStruct):
    """Android OS applications executables are typically stored in its own
    format, optimized for more efficient execution in Dalvik virtual
    machine.

    The whole file is kept as an immutable byte image. Index tables are decoded
    once, and the code of every concrete method is exposed as a mutable
    :class:`Dex.CodeItem` that only reaches the file again through
    :meth:`to_bytes` / :meth:`save`.

    .. seealso::
       Source - https://source.android.com/devices/tech/dalvik/dex-format
    """

    class AccessFlags(IntFlag):
        public = 0x1
        private = 0x2
        protected = 0x4
        static = 0x8
        final = 0x10
        synchronized = 0x20
        bridge = 0x40
        varargs = 0x80
        native = 0x100
        interface = 0x200
        abstract = 0x400
        strict = 0x800
        synthetic = 0x1000
        annotation = 0x2000
        enum = 0x4000
        constructor = 0x10000
        declared_synchronized = 0x20000

    def __init__(self, _io, _parent=None, _root=None):
        self._io = _io
        self._parent = _parent
        self._root = _root if _root else self
        self._read()

    @classmethod
    def from_file(cls, filename):
        with open(filename, "rb") as fd:
            data = fd.read()
        return cls.from_bytes(data)

    def _read(self):
        self._io.seek(0)
        self._image = self._io.read_bytes_full()
        self._io.seek(0)

        if not self._image.startswith(DEX_MAGIC):
            raise BadMagicError(self._image[:8])
        _check_extent("header", 0, HEADER_SIZE, len(self._image))

        self.header = Dex.HeaderItem(self._io, self, self._root)
        header = self.header

        self.string_ids: List[Dex.StringIdItem] = self._read_table(
            "string_ids", header.string_ids_off, header.string_ids_size, Dex.StringIdItem)
        self.strings: List[str] = [string_id.value.data for string_id in self.string_ids]

        self.type_ids: List[Dex.TypeIdItem] = self._read_table(
            "type_ids", header.type_ids_off, header.type_ids_size, Dex.TypeIdItem)
        self.type_names: List[str] = [self.strings[type_id.descriptor_idx] for type_id in self.type_ids]

        self.proto_ids: List[Dex.ProtoIdItem] = self._read_table(
            "proto_ids", header.proto_ids_off, header.proto_ids_size, Dex.ProtoIdItem)
        self.field_ids: List[Dex.FieldIdItem] = self._read_table(
            "field_ids", header.field_ids_off, header.field_ids_size, Dex.FieldIdItem)
        self.method_ids: List[Dex.MethodIdItem] = self._read_table(
            "method_ids", header.method_ids_off, header.method_ids_size, Dex.MethodIdItem)
        self.class_defs: List[Dex.ClassDefItem] = self._read_table(
            "class_defs", header.class_defs_off, header.class_defs_size, Dex.ClassDefItem)

        # method_idx -> code. Abstract and native methods have no entry.
        self.method_codes: Dict[int, Dex.CodeItem] = {}
        self._read_method_codes()

        log.debug(f"Parsed DEX {header.version_str}: {len(self.strings)} strings, {len(self.type_ids)} types, "
                  f"{len(self.method_ids)} methods, {len(self.class_defs)} classes, {len(self.method_codes)} code items")

    def _read_table(self, name, offset, count, item_type):
        _check_extent(name, offset, count * item_type.SIZE, len(self._image))

        self._io.seek(offset)
        table = [None] * count
        for i in range(count):
            table[i] = item_type(self._io, self, self._root)
        return table

    def _read_method_codes(self):
        for class_def in self.class_defs:
            if not class_def.class_data:
                continue

            for method in class_def.class_data.direct_methods + class_def.class_data.virtual_methods:
                _check_index("method", method.method_idx, len(self.method_ids))
                if method.code_off:
                    self.method_codes[method.method_idx] = self._read_code_item(method.code_off)

    def _read_code_item(self, offset):
        _check_extent("code_item", offset, CODE_ITEM_HEADER_SIZE, len(self._image))

        _pos = self._io.pos()
        self._io.seek(offset)
        code = Dex.CodeItem(self._io, self, self._root)
        self._io.seek(_pos)
        return code

    class HeaderItem(KaitaiStruct):
        SIZE = HEADER_SIZE

        def __init__(self, _io, _parent=None, _root=None):
            self._io = _io
            self._parent = _parent
            self._root = _root if _root else self
            self._read()

        def _read(self):
            self.magic = self._io.read_bytes(8)
            self.version_str = (KaitaiStream.bytes_terminate(self.magic[4:], 0, False)).decode(u"ascii", "ignore")
            self.checksum = self._io.read_u4le()
            self.signature = self._io.read_bytes(20)
            self.file_size = self._io.read_u4le()
            self.header_size = self._io.read_u4le()
            if self.header_size != HEADER_SIZE:
                raise BadHeaderSizeError(self.header_size, HEADER_SIZE)
            self.endian_tag = self._io.read_u4le()
            self.link_size = self._io.read_u4le()
            self.link_off = self._io.read_u4le()
            self.map_off = self._io.read_u4le()
            self.string_ids_size = self._io.read_u4le()
            self.string_ids_off = self._io.read_u4le()
            self.type_ids_size = self._io.read_u4le()
            self.type_ids_off = self._io.read_u4le()
            self.proto_ids_size = self._io.read_u4le()
            self.proto_ids_off = self._io.read_u4le()
            self.field_ids_size = self._io.read_u4le()
            self.field_ids_off = self._io.read_u4le()
            self.method_ids_size = self._io.read_u4le()
            self.method_ids_off = self._io.read_u4le()
            self.class_defs_size = self._io.read_u4le()
            self.class_defs_off = self._io.read_u4le()
            self.data_size = self._io.read_u4le()
            self.data_off = self._io.read_u4le()

    class StringIdItem(KaitaiStruct):
        SIZE = 4

        def __init__(self, _io, _parent=None, _root=None):
            self._io = _io
            self._parent = _parent
            self._root = _root if _root else self
            self._read()

        def _read(self):
            self.string_data_off = self._io.read_u4le()
            _check_extent("string_data", self.string_data_off, 1, self._io.size())

            _pos = self._io.pos()
            self._io.seek(self.string_data_off)
            self.value = Dex.StringIdItem.StringDataItem(self._io, self, self._root)
            self._io.seek(_pos)

        class StringDataItem(KaitaiStruct):
            def __init__(self, _io, _parent=None, _root=None):
                self._io = _io
                self._parent = _parent
                self._root = _root if _root else self
                self._read()

            def _read(self):
                # Only informational. The string ends at its NUL byte.
                self.utf16_size = Uleb128(self._io).value
                self.raw_data = self._io.read_bytes_term(0, False, True, False)
                self.data = decode_mutf8(self.raw_data)

    class TypeIdItem(KaitaiStruct):
        SIZE = 4

        def __init__(self, _io, _parent=None, _root=None):
            self._io = _io
            self._parent = _parent
            self._root = _root if _root else self
            self._read()

        def _read(self):
            self.descriptor_idx = self._io.read_u4le()
            _check_index("string", self.descriptor_idx, len(self._root.strings))

        @property
        def type_name(self):
            return self._root.strings[self.descriptor_idx]

    class ProtoIdItem(KaitaiStruct):
        SIZE = 12

        def __init__(self, _io, _parent=None, _root=None):
            self._io = _io
            self._parent = _parent
            self._root = _root if _root else self
            self._read()

        def _read(self):
            self.shorty_idx = self._io.read_u4le()
            self.return_type_idx = self._io.read_u4le()
            self.parameters_off = self._io.read_u4le()
            _check_index("string", self.shorty_idx, len(self._root.strings))
            _check_index("type", self.return_type_idx, len(self._root.type_names))

        @property
        def shorty_desc(self):
            """short-form descriptor string of this prototype, as pointed to by shorty_idx."""
            return self._root.strings[self.shorty_idx]

        @property
        def return_type(self):
            return self._root.type_names[self.return_type_idx]

    class FieldIdItem(KaitaiStruct):
        SIZE = 8

        def __init__(self, _io, _parent=None, _root=None):
            self._io = _io
            self._parent = _parent
            self._root = _root if _root else self
            self._read()

        def _read(self):
            self.class_idx = self._io.read_u2le()
            self.type_idx = self._io.read_u2le()
            self.name_idx = self._io.read_u4le()
            _check_index("type", self.class_idx, len(self._root.type_names))
            _check_index("type", self.type_idx, len(self._root.type_names))
            _check_index("string", self.name_idx, len(self._root.strings))

        @property
        def class_name(self):
            """the definer of this field."""
            return self._root.type_names[self.class_idx]

        @property
        def type_name(self):
            return self._root.type_names[self.type_idx]

        @property
        def field_name(self):
            return self._root.strings[self.name_idx]

    class MethodIdItem(KaitaiStruct):
        SIZE = 8

        def __init__(self, _io, _parent=None, _root=None):
            self._io = _io
            self._parent = _parent
            self._root = _root if _root else self
            self._read()

        def _read(self):
            self.class_idx = self._io.read_u2le()
            self.proto_idx = self._io.read_u2le()
            self.name_idx = self._io.read_u4le()
            _check_index("type", self.class_idx, len(self._root.type_names))
            _check_index("proto", self.proto_idx, len(self._root.proto_ids))
            _check_index("string", self.name_idx, len(self._root.strings))

        @property
        def class_name(self):
            """the definer of this method."""
            return self._root.type_names[self.class_idx]

        @property
        def proto_id(self):
            return self._root.proto_ids[self.proto_idx]

        @property
        def proto_desc(self):
            return self.proto_id.shorty_desc

        @property
        def method_name(self):
            return self._root.strings[self.name_idx]

    class ClassDefItem(KaitaiStruct):
        SIZE = 32

        def __init__(self, _io, _parent=None, _root=None):
            self._io = _io
            self._parent = _parent
            self._root = _root if _root else self
            self._read()

        def _read(self):
            self.class_idx = self._io.read_u4le()
            self.access_flags = Dex.AccessFlags(self._io.read_u4le())
            self.superclass_idx = self._io.read_u4le()
            self.interfaces_off = self._io.read_u4le()
            self.source_file_idx = self._io.read_u4le()
            self.annotations_off = self._io.read_u4le()
            self.class_data_off = self._io.read_u4le()
            self.static_values_off = self._io.read_u4le()

            _check_index("type", self.class_idx, len(self._root.type_names))
            if self.superclass_idx != NO_INDEX:
                _check_index("type", self.superclass_idx, len(self._root.type_names))
            if self.source_file_idx != NO_INDEX:
                _check_index("string", self.source_file_idx, len(self._root.strings))

            self.class_data = None
            if self.class_data_off != 0:
                _check_extent("class_data", self.class_data_off, 1, self._io.size())
                _pos = self._io.pos()
                self._io.seek(self.class_data_off)
                self.class_data = Dex.ClassDataItem(self._io, self, self._root)
                self._io.seek(_pos)

        @property
        def type_name(self):
            return self._root.type_names[self.class_idx]

        @property
        def superclass_name(self) -> Optional[str]:
            if self.superclass_idx == NO_INDEX:
                return None
            return self._root.type_names[self.superclass_idx]

        @property
        def source_file(self) -> Optional[str]:
            if self.source_file_idx == NO_INDEX:
                return None
            return self._root.strings[self.source_file_idx]

    class ClassDataItem(KaitaiStruct):
        def __init__(self, _io, _parent=None, _root=None):
            self._io = _io
            self._parent = _parent
            self._root = _root if _root else self
            self._read()

        def _read(self):
            self.static_fields_size = Uleb128(self._io).value
            self.instance_fields_size = Uleb128(self._io).value
            self.direct_methods_size = Uleb128(self._io).value
            self.virtual_methods_size = Uleb128(self._io).value

            self.static_fields = [None] * (self.static_fields_size)
            for i in range(self.static_fields_size):
                self.static_fields[i] = Dex.EncodedField(self._io, self, self._root)

            self.instance_fields = [None] * (self.instance_fields_size)
            for i in range(self.instance_fields_size):
                self.instance_fields[i] = Dex.EncodedField(self._io, self, self._root)

            self.direct_methods = self._read_methods(self.direct_methods_size)
            self.virtual_methods = self._read_methods(self.virtual_methods_size)

        def _read_methods(self, count):
            methods = [None] * count
            # Each list has its own delta chain, starting from 0
            method_idx = 0
            for i in range(count):
                methods[i] = Dex.EncodedMethod(self._io, self, self._root)
                method_idx += methods[i].method_idx_diff
                methods[i].method_idx = method_idx
            return methods

    class EncodedField(KaitaiStruct):
        def __init__(self, _io, _parent=None, _root=None):
            self._io = _io
            self._parent = _parent
            self._root = _root if _root else self
            self._read()

        def _read(self):
            self.field_idx_diff = Uleb128(self._io).value
            self.access_flags = Uleb128(self._io).value

    class EncodedMethod(KaitaiStruct):
        def __init__(self, _io, _parent=None, _root=None):
            self._io = _io
            self._parent = _parent
            self._root = _root if _root else self
            self._read()

        def _read(self):
            self.method_idx_diff = Uleb128(self._io).value
            self.access_flags = Dex.AccessFlags(Uleb128(self._io).value)
            self.code_off = Uleb128(self._io).value
            self.method_idx = self.method_idx_diff

    class CodeItem(KaitaiStruct):
        """A method body: fixed 16 byte header followed by ``insns_size`` 16-bit code units.

        ``insns`` may be edited in place, as long as its length stays the same.
        Nothing is written to the file until :meth:`write_back` is called.
        """

        def __init__(self, _io, _parent=None, _root=None):
            self._io = _io
            self._parent = _parent
            self._root = _root if _root else self
            self._read()

        def _read(self):
            self.offset = self._io.pos()
            self.registers_size = self._io.read_u2le()
            self.ins_size = self._io.read_u2le()
            self.outs_size = self._io.read_u2le()
            self.tries_size = self._io.read_u2le()
            self.debug_info_off = self._io.read_u4le()
            self.insns_size = self._io.read_u4le()

            _check_extent("code_item", self.offset, CODE_ITEM_HEADER_SIZE + self.insns_size * 2, self._io.size())
            self.insns = [None] * self.insns_size
            for i in range(self.insns_size):
                self.insns[i] = self._io.read_u2le()

        @property
        def insns_off(self) -> int:
            return self.offset + CODE_ITEM_HEADER_SIZE

        def check_size(self) -> None:
            if len(self.insns) != self.insns_size:
                raise ValueError("Code item at %s holds %s units, resizing to %s is not supported"
                                 % (hex(self.offset), self.insns_size, len(self.insns)))

        def write_back(self, image: bytearray) -> None:
            self.check_size()
            image[self.insns_off:self.insns_off + self.insns_size * 2] = units_to_bytes(self.insns)

    def get_code(self, method_idx: int) -> Optional[CodeItem]:
        return self.method_codes.get(method_idx, None)

    def set_code(self, method_idx: int, code: CodeItem) -> None:
        code.check_size()
        self.method_codes[method_idx] = code

    def find_method(self, class_name: str, method_name: str, shorty: str) -> Optional[int]:
        """Index of the first method declared by ``class_name`` with this name and prototype shorty."""
        for index, method in enumerate(self.method_ids):
            log.debug(f"Iterate method {index}: {method.class_name}.{method.method_name}(){method.proto_desc}")
            if method.class_name == class_name and method.method_name == method_name and method.proto_desc == shorty:
                return index
        return None

    def to_bytes(self) -> bytes:
        image = bytearray(self._image)
        for code in self.method_codes.values():
            code.write_back(image)
        update_integrity(image)
        return bytes(image)

    def save(self, filename: str) -> None:
        write_file_atomic(filename, self.to_bytes())

    def summary(self) -> str:
        header = self.header
        lines = [
            "--- DEX File Summary ---",
            "Magic: %s" % header.magic[:4].decode("ascii").replace("\n", "\\n"),
            "Version: %s" % header.version_str,
            "File Size: %s bytes" % header.file_size,
            "Checksum: %s (%s)" % (hex(header.checksum), "valid" if verify_integrity(self._image) else "invalid"),
            "String IDs: %s" % header.string_ids_size,
            "Type IDs: %s" % header.type_ids_size,
            "Proto IDs: %s" % header.proto_ids_size,
            "Field IDs: %s" % header.field_ids_size,
            "Method IDs: %s" % header.method_ids_size,
            "Class Defs: %s" % header.class_defs_size,
            "Code Items: %s" % len(self.method_codes),
            "------------------------",
        ]

        lines.append("\n--- Strings ---")
        for i, string in enumerate(self.strings):
            lines.append(f"String {i}: {string}")

        lines.append("\n--- Types ---")
        for i, type_id in enumerate(self.type_ids):
            lines.append(f"Type {i}: {self.type_names[i]}")
            lines.append(f"\tDescriptor Index: {type_id.descriptor_idx}")

        lines.append("\n--- Prototypes ---")
        for proto in self.proto_ids:
            lines.append(f"Shorty: {proto.shorty_desc}, Return Type: {proto.return_type}")
            if proto.parameters_off not in (0, NO_INDEX):
                lines.append(f"\tParameters Offset: {hex(proto.parameters_off)}")

        lines.append("\n--- Fields ---")
        for field in self.field_ids:
            lines.append(f"Field: {field.class_name}.{field.field_name} : {field.type_name}")

        lines.append("\n--- Methods ---")
        for index, method in enumerate(self.method_ids):
            code = self.get_code(index)
            lines.append(f"Method: {method.class_name}.{method.method_name}{method.proto_desc}")
            lines.append(f"\tProto Index: {method.proto_idx}")
            if code:
                lines.append(f"\tCode: {hex(code.offset)} ({code.insns_size} units)")

        lines.append("\n--- Class Definitions ---")
        for class_def in self.class_defs:
            lines.append(f"Class: {class_def.type_name}")
            lines.append(f"\tSuperclass: {class_def.superclass_name or '<None>'}")
            lines.append(f"\tSource File: {class_def.source_file or '<None>'}")

        return "\n".join(lines)

    def __str__(self):
        return self.summary()


def load(path: str) -> Dex:
    return Dex.from_file(path)
