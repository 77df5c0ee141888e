# -*- coding:utf-8 -*-
"""
Heap object layouts of an image file and a read-only Heap over its spaces.

Every object starts with:
    +0  klass     address of its Class object
    +4  monitor

Class            +8 descriptor (String), +12 dex_cache, +16 super_class,
                 +20 component_type, +24 status, +28 access_flags,
                 +32 primitive_type, +36 object_size, +40 class_size
String           +8 value (char[]), +12 offset, +16 count, +20 hash_code
Array            +8 length, elements at +12 (+16 for 8 byte components)
Method           +8 declaring_class, +12 access_flags, +16 name, +20 signature,
                 +24 dex_method_index, +28 code, +32 invoke_stub,
                 +36 native_method, +40 gc_map, +44 gc_map_length,
                 +48 mapping_table, +52 mapping_table_length
Field            +8 declaring_class, +12 access_flags, +16 name, +20 type, +24 offset
DexCache         +8 location (String)
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Optional

from dex_file import ACC_ABSTRACT, ACC_NATIVE
from dump_errors import ConsistencyError

OBJECT_ALIGNMENT = 8

OBJECT_KLASS_OFFSET = 0
OBJECT_MONITOR_OFFSET = 4
OBJECT_HEADER_SIZE = 8

CLASS_DESCRIPTOR_OFFSET = 8
CLASS_DEX_CACHE_OFFSET = 12
CLASS_SUPER_CLASS_OFFSET = 16
CLASS_COMPONENT_TYPE_OFFSET = 20
CLASS_STATUS_OFFSET = 24
CLASS_ACCESS_FLAGS_OFFSET = 28
CLASS_PRIMITIVE_TYPE_OFFSET = 32
CLASS_OBJECT_SIZE_OFFSET = 36
CLASS_CLASS_SIZE_OFFSET = 40
CLASS_HEADER_SIZE = 44

STRING_VALUE_OFFSET = 8
STRING_OFFSET_OFFSET = 12
STRING_COUNT_OFFSET = 16
STRING_HASH_CODE_OFFSET = 20
STRING_SIZE = 24

ARRAY_LENGTH_OFFSET = 8
ARRAY_DATA_OFFSET = 12
ARRAY_WIDE_DATA_OFFSET = 16

METHOD_DECLARING_CLASS_OFFSET = 8
METHOD_ACCESS_FLAGS_OFFSET = 12
METHOD_NAME_OFFSET = 16
METHOD_SIGNATURE_OFFSET = 20
METHOD_DEX_METHOD_INDEX_OFFSET = 24
METHOD_CODE_OFFSET = 28
METHOD_INVOKE_STUB_OFFSET = 32
METHOD_NATIVE_METHOD_OFFSET = 36
METHOD_GC_MAP_OFFSET = 40
METHOD_GC_MAP_LENGTH_OFFSET = 44
METHOD_MAPPING_TABLE_OFFSET = 48
METHOD_MAPPING_TABLE_LENGTH_OFFSET = 52
METHOD_SIZE = 56

FIELD_DECLARING_CLASS_OFFSET = 8
FIELD_ACCESS_FLAGS_OFFSET = 12
FIELD_NAME_OFFSET = 16
FIELD_TYPE_OFFSET = 20
FIELD_OFFSET_OFFSET = 24
FIELD_SIZE = 28

DEX_CACHE_LOCATION_OFFSET = 8
DEX_CACHE_SIZE = 12

_U32 = struct.Struct('<I')
_I32 = struct.Struct('<i')


class PrimitiveType(IntEnum):
    NOT = 0          # reference type
    BOOLEAN = 1
    BYTE = 2
    CHAR = 3
    SHORT = 4
    INT = 5
    LONG = 6
    FLOAT = 7
    DOUBLE = 8
    VOID = 9


COMPONENT_SIZES = {
    PrimitiveType.NOT: 4,
    PrimitiveType.BOOLEAN: 1,
    PrimitiveType.BYTE: 1,
    PrimitiveType.CHAR: 2,
    PrimitiveType.SHORT: 2,
    PrimitiveType.INT: 4,
    PrimitiveType.LONG: 8,
    PrimitiveType.FLOAT: 4,
    PrimitiveType.DOUBLE: 8,
    PrimitiveType.VOID: 0,
}


def array_data_offset(component_size):
    return ARRAY_WIDE_DATA_OFFSET if component_size == 8 else ARRAY_DATA_OFFSET


@dataclass
class MirrorClass:
    address: int
    klass: int
    descriptor: str
    dex_cache: int
    super_class: int
    component_type: int
    status: int
    access_flags: int
    primitive_type: int
    object_size: int
    class_size: int

    @property
    def is_array_class(self) -> bool:
        return self.component_type != 0

    @property
    def is_class_class(self) -> bool:
        """java.lang.Class is its own class"""
        return self.klass == self.address


@dataclass
class MirrorMethod:
    address: int
    declaring_class: int
    access_flags: int
    name: str
    signature: str
    dex_method_index: int
    code: int
    invoke_stub: int
    native_method: int
    gc_map: int
    gc_map_length: int
    mapping_table: int
    mapping_table_length: int

    @property
    def is_native(self) -> bool:
        return bool(self.access_flags & ACC_NATIVE)

    @property
    def is_abstract(self) -> bool:
        return bool(self.access_flags & ACC_ABSTRACT)

    @property
    def is_registered(self) -> bool:
        return self.native_method != 0


@dataclass
class MirrorField:
    address: int
    declaring_class: int
    access_flags: int
    name: str
    type_descriptor: str
    offset: int


class Heap:
    """Address based reads over one or more image spaces."""

    def __init__(self, spaces):
        self.spaces = list(spaces)
        self._classes: Dict[int, MirrorClass] = {}
        self._strings: Dict[int, Optional[str]] = {}

    @property
    def begin(self) -> int:
        return min(space.begin for space in self.spaces)

    @property
    def end(self) -> int:
        return max(space.end for space in self.spaces)

    def space_for(self, address):
        for space in self.spaces:
            if space.contains(address):
                return space
        return None

    def _locate(self, address, length, what):
        space = self.space_for(address)
        if space is None or address + length > space.end:
            raise ConsistencyError(f"{what} at {address:#010x} lies outside every image space")
        return space.mapped, address - space.begin

    def read_u32(self, address, what='reference') -> int:
        mapped, offset = self._locate(address, 4, what)
        return _U32.unpack_from(mapped.data, offset)[0]

    def read_i32(self, address, what='value') -> int:
        mapped, offset = self._locate(address, 4, what)
        return _I32.unpack_from(mapped.data, offset)[0]

    def read_bytes(self, address, length, what='data') -> bytes:
        mapped, offset = self._locate(address, length, what)
        return bytes(mapped.data[offset:offset + length])

    # ==================== Objects and classes ====================

    def klass_of(self, address) -> int:
        klass = self.read_u32(address + OBJECT_KLASS_OFFSET, 'object header')
        if klass == 0:
            raise ConsistencyError(f"Object at {address:#010x} has no class")
        return klass

    def get_class(self, address) -> MirrorClass:
        klass = self._classes.get(address)
        if klass is not None:
            return klass
        u32 = self.read_u32
        klass = MirrorClass(
            address=address,
            klass=u32(address + OBJECT_KLASS_OFFSET),
            descriptor=self.read_string(u32(address + CLASS_DESCRIPTOR_OFFSET)) or '',
            dex_cache=u32(address + CLASS_DEX_CACHE_OFFSET),
            super_class=u32(address + CLASS_SUPER_CLASS_OFFSET),
            component_type=u32(address + CLASS_COMPONENT_TYPE_OFFSET),
            status=self.read_i32(address + CLASS_STATUS_OFFSET),
            access_flags=u32(address + CLASS_ACCESS_FLAGS_OFFSET),
            primitive_type=u32(address + CLASS_PRIMITIVE_TYPE_OFFSET),
            object_size=u32(address + CLASS_OBJECT_SIZE_OFFSET),
            class_size=u32(address + CLASS_CLASS_SIZE_OFFSET),
        )
        self._classes[address] = klass
        return klass

    def class_of(self, address) -> MirrorClass:
        return self.get_class(self.klass_of(address))

    def is_object_array(self, address) -> bool:
        klass = self.class_of(address)
        if not klass.is_array_class:
            return False
        return self.get_class(klass.component_type).primitive_type == PrimitiveType.NOT

    def component_size(self, array_class: MirrorClass) -> int:
        component = self.get_class(array_class.component_type)
        try:
            return COMPONENT_SIZES[PrimitiveType(component.primitive_type)]
        except ValueError:
            raise ConsistencyError(
                f"Class {component.descriptor} at {component.address:#010x} "
                f"has unknown primitive type {component.primitive_type}") from None

    def array_length(self, address) -> int:
        return self.read_u32(address + ARRAY_LENGTH_OFFSET, 'array length')

    def object_array_elements(self, address) -> List[int]:
        length = self.array_length(address)
        data = address + ARRAY_DATA_OFFSET
        return [self.read_u32(data + i * 4, 'array element') for i in range(length)]

    def size_of(self, address) -> int:
        """Size probe: the byte size of the object at address, without padding."""
        klass = self.class_of(address)
        if klass.is_class_class:
            return self.read_u32(address + CLASS_CLASS_SIZE_OFFSET, 'class size')
        if klass.is_array_class:
            component_size = self.component_size(klass)
            return array_data_offset(component_size) + self.array_length(address) * component_size
        return klass.object_size

    # ==================== Strings, methods, fields ====================

    def read_string(self, address) -> Optional[str]:
        """Contents of the java.lang.String at address; None for a null reference."""
        if address == 0:
            return None
        if address in self._strings:
            return self._strings[address]
        value = self.read_u32(address + STRING_VALUE_OFFSET, 'string value')
        offset = self.read_i32(address + STRING_OFFSET_OFFSET)
        count = self.read_i32(address + STRING_COUNT_OFFSET)
        if value == 0 or count <= 0:
            text = ''
        else:
            if offset < 0 or offset + count > self.array_length(value):
                raise ConsistencyError(
                    f"String at {address:#010x} (offset {offset}, count {count}) overruns its char array")
            raw = self.read_bytes(value + ARRAY_DATA_OFFSET + offset * 2, count * 2, 'string chars')
            text = raw.decode('utf-16-le', 'replace')
        self._strings[address] = text
        return text

    def get_method(self, address) -> MirrorMethod:
        u32 = self.read_u32
        return MirrorMethod(
            address=address,
            declaring_class=u32(address + METHOD_DECLARING_CLASS_OFFSET),
            access_flags=u32(address + METHOD_ACCESS_FLAGS_OFFSET),
            name=self.read_string(u32(address + METHOD_NAME_OFFSET)) or '',
            signature=self.read_string(u32(address + METHOD_SIGNATURE_OFFSET)) or '',
            dex_method_index=u32(address + METHOD_DEX_METHOD_INDEX_OFFSET),
            code=u32(address + METHOD_CODE_OFFSET),
            invoke_stub=u32(address + METHOD_INVOKE_STUB_OFFSET),
            native_method=u32(address + METHOD_NATIVE_METHOD_OFFSET),
            gc_map=u32(address + METHOD_GC_MAP_OFFSET),
            gc_map_length=u32(address + METHOD_GC_MAP_LENGTH_OFFSET),
            mapping_table=u32(address + METHOD_MAPPING_TABLE_OFFSET),
            mapping_table_length=u32(address + METHOD_MAPPING_TABLE_LENGTH_OFFSET),
        )

    def get_field(self, address) -> MirrorField:
        u32 = self.read_u32
        return MirrorField(
            address=address,
            declaring_class=u32(address + FIELD_DECLARING_CLASS_OFFSET),
            access_flags=u32(address + FIELD_ACCESS_FLAGS_OFFSET),
            name=self.read_string(u32(address + FIELD_NAME_OFFSET)) or '',
            type_descriptor=self.read_string(u32(address + FIELD_TYPE_OFFSET)) or '',
            offset=u32(address + FIELD_OFFSET_OFFSET),
        )

    def dex_cache_location(self, address) -> Optional[str]:
        if address == 0:
            return None
        return self.read_string(self.read_u32(address + DEX_CACHE_LOCATION_OFFSET))
