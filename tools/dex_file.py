#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
DEX 字节码文件解析器

Reads the class/method tables of a dex file: the bytecode container an oat
file was compiled from. Only the parts needed to name classes and methods
and to find code items are decoded.

Layout reference: header (0x70 bytes), string_ids, type_ids, proto_ids,
field_ids, method_ids, class_defs, then the data section (string data,
type lists, class_data items, code items).
"""

import argparse
import sys
import zlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dump_errors import DumpError, FormatError
from mapped_file import MappedFile

DEX_MAGIC = b'dex\n'
DEX_VERSIONS = (b'035\x00', b'036\x00')
HEADER_SIZE = 0x70
ENDIAN_CONSTANT = 0x12345678
NO_INDEX = 0xffffffff

# Access flags
ACC_PUBLIC = 0x0001
ACC_PRIVATE = 0x0002
ACC_PROTECTED = 0x0004
ACC_STATIC = 0x0008
ACC_FINAL = 0x0010
ACC_SYNCHRONIZED = 0x0020
ACC_NATIVE = 0x0100
ACC_INTERFACE = 0x0200
ACC_ABSTRACT = 0x0400
ACC_CONSTRUCTOR = 0x10000

STRING_ID_ITEM_SIZE = 4
TYPE_ID_ITEM_SIZE = 4
PROTO_ID_ITEM_SIZE = 12
FIELD_ID_ITEM_SIZE = 8
METHOD_ID_ITEM_SIZE = 8
CLASS_DEF_ITEM_SIZE = 32


@dataclass
class DexHeader:
    """DEX 文件头"""
    magic: bytes = b''
    checksum: int = 0
    file_size: int = 0
    header_size: int = 0
    endian_tag: int = 0
    string_ids_size: int = 0
    string_ids_off: int = 0
    type_ids_size: int = 0
    type_ids_off: int = 0
    proto_ids_size: int = 0
    proto_ids_off: int = 0
    field_ids_size: int = 0
    field_ids_off: int = 0
    method_ids_size: int = 0
    method_ids_off: int = 0
    class_defs_size: int = 0
    class_defs_off: int = 0
    data_size: int = 0
    data_off: int = 0


@dataclass
class ClassDef:
    class_idx: int
    access_flags: int
    superclass_idx: int
    interfaces_off: int
    source_file_idx: int
    annotations_off: int
    class_data_off: int
    static_values_off: int


@dataclass
class MethodId:
    class_idx: int
    proto_idx: int
    name_idx: int


@dataclass
class EncodedMember:
    member_idx: int            # field_idx 或 method_idx
    access_flags: int
    code_off: int = 0          # 仅方法有效


@dataclass
class ClassData:
    static_fields: List[EncodedMember] = field(default_factory=list)
    instance_fields: List[EncodedMember] = field(default_factory=list)
    direct_methods: List[EncodedMember] = field(default_factory=list)
    virtual_methods: List[EncodedMember] = field(default_factory=list)

    @property
    def methods(self) -> List[EncodedMember]:
        """Direct methods then virtual methods, in declaration order."""
        return self.direct_methods + self.virtual_methods


@dataclass
class CodeItem:
    registers_size: int
    ins_size: int
    outs_size: int
    tries_size: int
    debug_info_off: int
    insns_size_in_code_units: int

    @property
    def insns_size_in_bytes(self) -> int:
        return self.insns_size_in_code_units * 2


def decode_mutf8(raw: bytes) -> str:
    """Decode modified UTF-8 (encoded NUL and surrogate halves)."""
    raw = raw.replace(b'\xc0\x80', b'\x00')
    try:
        text = raw.decode('utf-8', 'surrogatepass')
        return text.encode('utf-16', 'surrogatepass').decode('utf-16')
    except UnicodeError:
        return raw.decode('utf-8', 'replace')


class DexFile:
    """Read-only view of a dex file's class and method tables."""

    def __init__(self, location, mapped: MappedFile):
        self.location = location
        self.mapped = mapped
        self.header = self._read_header()
        self._strings: Dict[int, str] = {}
        self._code_offsets: Optional[Dict[int, int]] = None

    @classmethod
    def open(cls, location) -> 'DexFile':
        mapped = MappedFile.open(location)
        try:
            return cls(location, mapped)
        except DumpError:
            mapped.close()
            raise

    def close(self):
        self.mapped.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _read_header(self) -> DexHeader:
        mapped = self.mapped
        if mapped.size < HEADER_SIZE:
            raise FormatError(f"{self.location}: file too short for a dex header ({mapped.size} bytes)")
        magic = mapped.read_bytes(0, 8)
        if magic[:4] != DEX_MAGIC:
            raise FormatError(f"{self.location}: bad dex magic {magic[:4]!r}")
        if magic[4:] not in DEX_VERSIONS:
            raise FormatError(f"{self.location}: unsupported dex version {magic[4:]!r}")

        u32 = mapped.read_u32
        header = DexHeader(
            magic=magic,
            checksum=u32(8),
            file_size=u32(32),
            header_size=u32(36),
            endian_tag=u32(40),
            string_ids_size=u32(56),
            string_ids_off=u32(60),
            type_ids_size=u32(64),
            type_ids_off=u32(68),
            proto_ids_size=u32(72),
            proto_ids_off=u32(76),
            field_ids_size=u32(80),
            field_ids_off=u32(84),
            method_ids_size=u32(88),
            method_ids_off=u32(92),
            class_defs_size=u32(96),
            class_defs_off=u32(100),
            data_size=u32(104),
            data_off=u32(108),
        )
        if header.header_size != HEADER_SIZE:
            raise FormatError(f"{self.location}: unexpected header size 0x{header.header_size:x}")
        if header.endian_tag != ENDIAN_CONSTANT:
            raise FormatError(f"{self.location}: unexpected endian tag 0x{header.endian_tag:08x}")
        if header.file_size > mapped.size:
            raise FormatError(
                f"{self.location}: header file_size {header.file_size} exceeds actual size {mapped.size}")
        actual = zlib.adler32(mapped.data[12:header.file_size]) & 0xffffffff
        if actual != header.checksum:
            raise FormatError(
                f"{self.location}: bad checksum {actual:08x}, expected {header.checksum:08x}")

        for name, size, off, item_size in (
                ('string_ids', header.string_ids_size, header.string_ids_off, STRING_ID_ITEM_SIZE),
                ('type_ids', header.type_ids_size, header.type_ids_off, TYPE_ID_ITEM_SIZE),
                ('proto_ids', header.proto_ids_size, header.proto_ids_off, PROTO_ID_ITEM_SIZE),
                ('field_ids', header.field_ids_size, header.field_ids_off, FIELD_ID_ITEM_SIZE),
                ('method_ids', header.method_ids_size, header.method_ids_off, METHOD_ID_ITEM_SIZE),
                ('class_defs', header.class_defs_size, header.class_defs_off, CLASS_DEF_ITEM_SIZE)):
            mapped.check_range(off, size * item_size, name)
        return header

    # ==================== String / type / proto tables ====================

    def get_string(self, string_idx: int) -> str:
        if string_idx in self._strings:
            return self._strings[string_idx]
        if string_idx >= self.header.string_ids_size:
            raise FormatError(f"{self.location}: string index {string_idx} out of range")
        data_off = self.mapped.read_u32(self.header.string_ids_off + string_idx * STRING_ID_ITEM_SIZE)
        _, start = self.mapped.read_uleb128(data_off)
        end = self.mapped.data.find(b'\x00', start)
        if end < 0:
            raise FormatError(f"{self.location}: unterminated string at 0x{start:x}")
        value = decode_mutf8(bytes(self.mapped.data[start:end]))
        self._strings[string_idx] = value
        return value

    def get_type_descriptor(self, type_idx: int) -> str:
        if type_idx >= self.header.type_ids_size:
            raise FormatError(f"{self.location}: type index {type_idx} out of range")
        descriptor_idx = self.mapped.read_u32(self.header.type_ids_off + type_idx * TYPE_ID_ITEM_SIZE)
        return self.get_string(descriptor_idx)

    def get_type_list(self, offset: int) -> List[int]:
        if offset == 0:
            return []
        size = self.mapped.read_u32(offset, 'type_list')
        return [self.mapped.read_u16(offset + 4 + i * 2, 'type_list') for i in range(size)]

    # ==================== Methods ====================

    def get_method_id(self, method_idx: int) -> MethodId:
        if method_idx >= self.header.method_ids_size:
            raise FormatError(f"{self.location}: method index {method_idx} out of range")
        off = self.header.method_ids_off + method_idx * METHOD_ID_ITEM_SIZE
        return MethodId(
            class_idx=self.mapped.read_u16(off),
            proto_idx=self.mapped.read_u16(off + 2),
            name_idx=self.mapped.read_u32(off + 4),
        )

    def get_method_name(self, method_id: MethodId) -> str:
        return self.get_string(method_id.name_idx)

    def get_method_signature(self, method_id: MethodId) -> str:
        """'(ILjava/lang/String;)V' built from the method's proto_id."""
        if method_id.proto_idx >= self.header.proto_ids_size:
            raise FormatError(f"{self.location}: proto index {method_id.proto_idx} out of range")
        off = self.header.proto_ids_off + method_id.proto_idx * PROTO_ID_ITEM_SIZE
        return_type_idx = self.mapped.read_u32(off + 4)
        parameters_off = self.mapped.read_u32(off + 8)
        params = ''.join(self.get_type_descriptor(t) for t in self.get_type_list(parameters_off))
        return f"({params}){self.get_type_descriptor(return_type_idx)}"

    # ==================== Classes ====================

    @property
    def num_class_defs(self) -> int:
        return self.header.class_defs_size

    def get_class_def(self, class_def_idx: int) -> ClassDef:
        if class_def_idx >= self.header.class_defs_size:
            raise FormatError(f"{self.location}: class_def index {class_def_idx} out of range")
        off = self.header.class_defs_off + class_def_idx * CLASS_DEF_ITEM_SIZE
        return ClassDef(*(self.mapped.read_u32(off + i * 4) for i in range(8)))

    def get_class_descriptor(self, class_def: ClassDef) -> str:
        return self.get_type_descriptor(class_def.class_idx)

    def get_class_data(self, class_def: ClassDef) -> Optional[ClassData]:
        """Decode a class_data_item; None for classes without one (marker interfaces)."""
        if class_def.class_data_off == 0:
            return None
        read = self.mapped.read_uleb128
        off = class_def.class_data_off
        static_fields_size, off = read(off)
        instance_fields_size, off = read(off)
        direct_methods_size, off = read(off)
        virtual_methods_size, off = read(off)

        class_data = ClassData()
        for members, count, is_method in (
                (class_data.static_fields, static_fields_size, False),
                (class_data.instance_fields, instance_fields_size, False),
                (class_data.direct_methods, direct_methods_size, True),
                (class_data.virtual_methods, virtual_methods_size, True)):
            # member indices are delta encoded, restarting for each list
            member_idx = 0
            for _ in range(count):
                diff, off = read(off)
                access_flags, off = read(off)
                code_off = 0
                if is_method:
                    code_off, off = read(off)
                member_idx += diff
                members.append(EncodedMember(member_idx, access_flags, code_off))
        return class_data

    # ==================== Code items ====================

    def get_code_item(self, code_off: int) -> Optional[CodeItem]:
        if code_off == 0:
            return None
        read_u16 = self.mapped.read_u16
        return CodeItem(
            registers_size=read_u16(code_off, 'code_item'),
            ins_size=read_u16(code_off + 2, 'code_item'),
            outs_size=read_u16(code_off + 4, 'code_item'),
            tries_size=read_u16(code_off + 6, 'code_item'),
            debug_info_off=self.mapped.read_u32(code_off + 8, 'code_item'),
            insns_size_in_code_units=self.mapped.read_u32(code_off + 12, 'code_item'),
        )

    def find_code_item(self, method_idx: int) -> Optional[CodeItem]:
        """Code item of the method with the given method_idx, if it has one."""
        if self._code_offsets is None:
            self._code_offsets = {}
            for class_def_idx in range(self.num_class_defs):
                class_data = self.get_class_data(self.get_class_def(class_def_idx))
                if class_data is None:
                    continue
                for method in class_data.methods:
                    self._code_offsets[method.member_idx] = method.code_off
        return self.get_code_item(self._code_offsets.get(method_idx, 0))


def open_dex_file(location) -> DexFile:
    """Bytecode container locator: opens the dex file at location."""
    return DexFile.open(location)


def main():
    parser = argparse.ArgumentParser(description="List the classes and methods of a dex file")
    parser.add_argument('-f', '--file', required=True, help="dex file path")
    args = parser.parse_args()

    try:
        with open_dex_file(args.file) as dex:
            for class_def_idx in range(dex.num_class_defs):
                class_def = dex.get_class_def(class_def_idx)
                print(f"{class_def_idx}: {dex.get_class_descriptor(class_def)}")
                class_data = dex.get_class_data(class_def)
                if class_data is None:
                    continue
                for method in class_data.methods:
                    method_id = dex.get_method_id(method.member_idx)
                    print(f"\t{dex.get_method_name(method_id)} {dex.get_method_signature(method_id)}")
    except DumpError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
