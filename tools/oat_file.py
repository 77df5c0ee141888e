# -*- coding:utf-8 -*-
"""
OAT 文件读取器 (compiled-code archive)

Layout:
    header            magic "oat\\n", version "001\\0", checksum, instruction_set,
                      dex_file_count, executable_offset
    dex file entries  location_size, location, location_checksum,
                      class_count, class_count x OatClass offset
    OatClass          status, method_count, method_count x OatMethodOffsets
    OatMethodOffsets  code, frame_size_in_bytes, core_spill_mask, fp_spill_mask,
                      mapping_table, vmap_table, gc_map, invoke_stub
    code/stub blobs   u32 byte size, then the bytes; the offset points past the size

Offsets are file relative; addresses are the mapping base plus the offset.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional

from dump_errors import DumpError, FormatError
from mapped_file import MappedFile

OAT_MAGIC = b'oat\n'
OAT_VERSION = b'001\x00'
OAT_HEADER_SIZE = 24
OAT_METHOD_OFFSETS_FIELDS = 8
OAT_METHOD_OFFSETS_SIZE = OAT_METHOD_OFFSETS_FIELDS * 4
OAT_CLASS_HEADER_SIZE = 8


class InstructionSet(IntEnum):
    NONE = 0
    ARM = 1
    THUMB2 = 2
    X86 = 3
    MIPS = 4


class ClassStatus(IntEnum):
    """Class initialization state, shared by oat classes and heap Class objects"""
    ERROR = -1
    NOT_READY = 0
    IDX = 1
    LOADED = 2
    RESOLVED = 3
    VERIFYING = 4
    VERIFIED = 5
    INITIALIZING = 6
    INITIALIZED = 7


def format_enum(enum_type, value):
    try:
        return enum_type(value).name
    except ValueError:
        return f"{enum_type.__name__}({value})"


@dataclass
class OatHeader:
    magic: bytes
    version: bytes
    checksum: int
    instruction_set: int
    dex_file_count: int
    executable_offset: int

    @property
    def magic_text(self) -> str:
        """'oat\\n001' with the newline escaped for one-line output"""
        raw = (self.magic + self.version).rstrip(b'\x00')
        return raw.decode('ascii', 'replace').replace('\n', '\\n')


@dataclass
class OatMethod:
    """Compiled metadata of one method; absent tables have offset 0."""
    begin: int
    code_offset: int
    frame_size_in_bytes: int
    core_spill_mask: int
    fp_spill_mask: int
    mapping_table_offset: int
    vmap_table_offset: int
    gc_map_offset: int
    invoke_stub_offset: int
    code_size: int = 0
    invoke_stub_size: int = 0

    def _address(self, offset):
        return self.begin + offset if offset else 0

    @property
    def code(self) -> int:
        return self._address(self.code_offset)

    @property
    def mapping_table(self) -> int:
        return self._address(self.mapping_table_offset)

    @property
    def vmap_table(self) -> int:
        return self._address(self.vmap_table_offset)

    @property
    def gc_map(self) -> int:
        return self._address(self.gc_map_offset)

    @property
    def invoke_stub(self) -> int:
        return self._address(self.invoke_stub_offset)


class OatClass:
    def __init__(self, oat_file: 'OatFile', offset: int):
        self.oat_file = oat_file
        self.offset = offset
        mapped = oat_file.mapped
        self.status = mapped.read_i32(offset, 'OatClass status')
        self.method_count = mapped.read_u32(offset + 4, 'OatClass method_count')
        mapped.check_range(offset + OAT_CLASS_HEADER_SIZE,
                           self.method_count * OAT_METHOD_OFFSETS_SIZE, 'OatMethodOffsets')

    def get_oat_method(self, method_index: int) -> OatMethod:
        if method_index >= self.method_count:
            raise FormatError(
                f"{self.oat_file.location}: method index {method_index} out of range "
                f"for OatClass at 0x{self.offset:x} ({self.method_count} methods)")
        base = self.offset + OAT_CLASS_HEADER_SIZE + method_index * OAT_METHOD_OFFSETS_SIZE
        values = [self.oat_file.mapped.read_u32(base + i * 4) for i in range(OAT_METHOD_OFFSETS_FIELDS)]
        method = OatMethod(self.oat_file.begin, *values)
        method.code_size = self.oat_file.blob_size(method.code_offset)
        method.invoke_stub_size = self.oat_file.blob_size(method.invoke_stub_offset)
        return method


class OatDexFile:
    def __init__(self, oat_file: 'OatFile', dex_file_location: str,
                 dex_file_location_checksum: int, class_offsets: List[int]):
        self.oat_file = oat_file
        self.dex_file_location = dex_file_location
        self.dex_file_location_checksum = dex_file_location_checksum
        self.class_offsets = class_offsets

    @property
    def class_count(self) -> int:
        return len(self.class_offsets)

    def get_oat_class(self, class_def_index: int) -> OatClass:
        if class_def_index >= len(self.class_offsets):
            raise FormatError(
                f"{self.oat_file.location}: no compiled class for class_def {class_def_index} "
                f"of {self.dex_file_location} ({len(self.class_offsets)} classes)")
        return OatClass(self.oat_file, self.class_offsets[class_def_index])


class OatFile:
    """Read-only view of an oat file, mapped at `begin` (0 unless a base is requested)."""

    def __init__(self, location, mapped: MappedFile, begin=0):
        self.location = location
        self.mapped = mapped
        self.begin = begin
        self.header = self._read_header()
        self.oat_dex_files = self._read_oat_dex_files()

    @classmethod
    def open(cls, location, expected_checksum: Optional[int] = None, requested_base=0) -> 'OatFile':
        mapped = MappedFile.open(location)
        try:
            oat_file = cls(location, mapped, requested_base)
            if expected_checksum is not None and oat_file.header.checksum != expected_checksum:
                raise FormatError(
                    f"{location}: oat checksum {oat_file.header.checksum:08x} "
                    f"does not match expected {expected_checksum:08x}")
            return oat_file
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

    @property
    def end(self) -> int:
        return self.begin + self.mapped.size

    def contains_address(self, address) -> bool:
        return self.begin <= address < self.end

    def _read_header(self) -> OatHeader:
        mapped = self.mapped
        if mapped.size < OAT_HEADER_SIZE:
            raise FormatError(f"{self.location}: file too short for an oat header ({mapped.size} bytes)")
        header = OatHeader(
            magic=mapped.read_bytes(0, 4),
            version=mapped.read_bytes(4, 4),
            checksum=mapped.read_u32(8),
            instruction_set=mapped.read_u32(12),
            dex_file_count=mapped.read_u32(16),
            executable_offset=mapped.read_u32(20),
        )
        if header.magic != OAT_MAGIC:
            raise FormatError(f"{self.location}: bad oat magic {header.magic!r}")
        if header.version != OAT_VERSION:
            raise FormatError(f"{self.location}: unsupported oat version {header.version!r}")
        if header.executable_offset > mapped.size:
            raise FormatError(
                f"{self.location}: executable offset 0x{header.executable_offset:x} "
                f"beyond end of file (size {mapped.size})")
        return header

    def _read_oat_dex_files(self) -> List[OatDexFile]:
        mapped = self.mapped
        oat_dex_files = []
        offset = OAT_HEADER_SIZE
        for i in range(self.header.dex_file_count):
            location_size = mapped.read_u32(offset, f'dex file {i} location size')
            offset += 4
            raw_location = mapped.read_bytes(offset, location_size, f'dex file {i} location')
            offset += location_size
            location_checksum = mapped.read_u32(offset, f'dex file {i} checksum')
            offset += 4
            class_count = mapped.read_u32(offset, f'dex file {i} class count')
            offset += 4
            mapped.check_range(offset, class_count * 4, f'dex file {i} class offsets')
            class_offsets = [mapped.read_u32(offset + j * 4) for j in range(class_count)]
            offset += class_count * 4
            oat_dex_files.append(OatDexFile(self, raw_location.decode('utf-8', 'replace'),
                                            location_checksum, class_offsets))
        return oat_dex_files

    def get_oat_dex_files(self) -> List[OatDexFile]:
        return list(self.oat_dex_files)

    def blob_size(self, offset) -> int:
        """Byte size stored in the word before a code or stub blob; 0 when absent."""
        if offset < 4:
            return 0
        return self.mapped.read_u32(offset - 4, 'code size')

    def code_size_at(self, address) -> int:
        if not address or not self.contains_address(address):
            return 0
        return self.blob_size(address - self.begin)
