# -*- coding:utf-8 -*-
"""
Image (.art) 堆快照读取器

An image file is a serialized heap: a 28 byte header followed by the objects,
each padded to OBJECT_ALIGNMENT. The file is mapped at header.image_begin, so
object addresses are image_begin + file offset.
"""

from dataclasses import dataclass
from enum import IntEnum

from dump_errors import DumpError, FormatError
from mapped_file import MappedFile, round_up
from mirror import ARRAY_DATA_OFFSET, ARRAY_LENGTH_OFFSET, OBJECT_ALIGNMENT

IMAGE_MAGIC = b'art\n'
IMAGE_VERSION = b'000\x00'
IMAGE_HEADER_SIZE = 28


class ImageRoot(IntEnum):
    """Fixed slots of the image roots array"""
    JNI_STUB_ARRAY = 0
    ABSTRACT_METHOD_ERROR_STUB_ARRAY = 1
    INSTANCE_RESOLUTION_STUB_ARRAY = 2
    STATIC_RESOLUTION_STUB_ARRAY = 3
    UNKNOWN_METHOD_RESOLUTION_STUB_ARRAY = 4
    CALLEE_SAVE_METHOD = 5
    REFS_ONLY_SAVE_METHOD = 6
    REFS_AND_ARGS_SAVE_METHOD = 7
    OAT_LOCATION = 8
    DEX_CACHES = 9
    CLASS_ROOTS = 10


IMAGE_ROOTS_MAX = len(ImageRoot)

CALLEE_SAVE_ROOTS = (
    ImageRoot.CALLEE_SAVE_METHOD,
    ImageRoot.REFS_ONLY_SAVE_METHOD,
    ImageRoot.REFS_AND_ARGS_SAVE_METHOD,
)


@dataclass
class ImageHeader:
    magic: bytes
    version: bytes
    image_begin: int
    oat_checksum: int
    oat_begin: int
    oat_end: int
    image_roots: int

    @classmethod
    def read(cls, mapped: MappedFile) -> 'ImageHeader':
        return cls(
            magic=mapped.read_bytes(0, 4),
            version=mapped.read_bytes(4, 4),
            image_begin=mapped.read_u32(8),
            oat_checksum=mapped.read_u32(12),
            oat_begin=mapped.read_u32(16),
            oat_end=mapped.read_u32(20),
            image_roots=mapped.read_u32(24),
        )

    def is_valid(self) -> bool:
        if self.magic != IMAGE_MAGIC or self.version != IMAGE_VERSION:
            return False
        if self.image_begin % OBJECT_ALIGNMENT != 0:
            return False
        return self.oat_begin <= self.oat_end

    @property
    def magic_text(self) -> str:
        raw = (self.magic + self.version).rstrip(b'\x00')
        return raw.decode('ascii', 'replace').replace('\n', '\\n')


class ImageSpace:
    """Read-only mapping of one image file at its image_begin address."""

    def __init__(self, path, mapped: MappedFile, header: ImageHeader):
        self.path = path
        self.mapped = mapped
        self.header = header

    @classmethod
    def open(cls, path) -> 'ImageSpace':
        mapped = MappedFile.open(path)
        try:
            if mapped.size < IMAGE_HEADER_SIZE:
                raise FormatError(f"Invalid image header {path}: file too short ({mapped.size} bytes)")
            header = ImageHeader.read(mapped)
            if not header.is_valid():
                raise FormatError(f"Invalid image header {path}")
            space = cls(path, mapped, header)
            space._check_roots()
            return space
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
    def begin(self) -> int:
        return self.header.image_begin

    @property
    def end(self) -> int:
        return self.begin + self.mapped.size

    @property
    def header_size(self) -> int:
        return IMAGE_HEADER_SIZE

    @property
    def objects_begin(self) -> int:
        return self.begin + round_up(IMAGE_HEADER_SIZE, OBJECT_ALIGNMENT)

    @property
    def file_size(self) -> int:
        return self.mapped.size

    def contains(self, address) -> bool:
        return self.begin <= address < self.end

    def _check_roots(self):
        roots = self.header.image_roots
        if not self.objects_begin <= roots < self.end:
            raise FormatError(f"{self.path}: image roots {roots:#010x} outside the image")
        length = self.mapped.read_u32(roots - self.begin + ARRAY_LENGTH_OFFSET, 'image roots length')
        if length != IMAGE_ROOTS_MAX:
            raise FormatError(f"{self.path}: image roots array has {length} entries, expected {IMAGE_ROOTS_MAX}")
        self.mapped.check_range(roots - self.begin + ARRAY_DATA_OFFSET, length * 4, 'image roots')

    def get_image_root(self, root: ImageRoot) -> int:
        offset = self.header.image_roots - self.begin + ARRAY_DATA_OFFSET + int(root) * 4
        return self.mapped.read_u32(offset, 'image root')
