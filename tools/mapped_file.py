# -*- coding:utf-8 -*-
"""
Read-only memory mapped view of an input file.

All multi-byte values in dex, oat and image files are little-endian.
"""

import mmap
import struct

from dump_errors import FormatError, NotFoundError

_U16 = struct.Struct('<H')
_U32 = struct.Struct('<I')
_I32 = struct.Struct('<i')


def round_up(value, alignment):
    """Round value up to a multiple of alignment (a power of two)."""
    return (value + alignment - 1) & ~(alignment - 1)


def format_pointer(address):
    return f"0x{address:08x}"


class MappedFile:
    """
    Scoped read-only mapping of a whole file.

    Usage:
        with MappedFile.open(path) as mapped:
            magic = mapped.read_bytes(0, 4)
    """

    def __init__(self, path, file_obj, data):
        self.path = path
        self._file = file_obj
        self.data = data

    @classmethod
    def open(cls, path):
        try:
            file_obj = open(path, 'rb')
        except OSError as e:
            raise NotFoundError(path, e.strerror) from e
        try:
            data = mmap.mmap(file_obj.fileno(), 0, access=mmap.ACCESS_READ)
        except ValueError:
            # zero-length files cannot be mapped
            data = b''
        except OSError as e:
            file_obj.close()
            raise NotFoundError(path, e.strerror) from e
        return cls(path, file_obj, data)

    @property
    def size(self):
        return len(self.data)

    @property
    def closed(self):
        return self._file is None

    def close(self):
        if self._file is None:
            return
        if isinstance(self.data, mmap.mmap):
            self.data.close()
        self.data = b''
        self._file.close()
        self._file = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def check_range(self, offset, length, what='data'):
        if offset < 0 or length < 0 or offset + length > len(self.data):
            raise FormatError(
                f"{self.path}: {what} at offset 0x{offset:x} (+{length}) "
                f"lies outside the file (size {len(self.data)})")

    def read_bytes(self, offset, length, what='data'):
        self.check_range(offset, length, what)
        return bytes(self.data[offset:offset + length])

    def read_u8(self, offset, what='u8'):
        self.check_range(offset, 1, what)
        return self.data[offset]

    def read_u16(self, offset, what='u16'):
        self.check_range(offset, 2, what)
        return _U16.unpack_from(self.data, offset)[0]

    def read_u32(self, offset, what='u32'):
        self.check_range(offset, 4, what)
        return _U32.unpack_from(self.data, offset)[0]

    def read_i32(self, offset, what='i32'):
        self.check_range(offset, 4, what)
        return _I32.unpack_from(self.data, offset)[0]

    def read_uleb128(self, offset):
        """Decode an unsigned LEB128 value, returning (value, next_offset)."""
        result = 0
        shift = 0
        for i in range(5):
            byte = self.read_u8(offset + i, 'uleb128')
            result |= (byte & 0x7f) << shift
            if byte & 0x80 == 0:
                return result, offset + i + 1
            shift += 7
        raise FormatError(f"{self.path}: uleb128 at offset 0x{offset:x} is longer than 5 bytes")
