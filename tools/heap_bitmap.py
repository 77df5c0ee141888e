# -*- coding:utf-8 -*-
"""
Live object bitmap and the walk over it.

One bit per OBJECT_ALIGNMENT bytes of heap; a set bit marks the first byte of
a live object. Object boundaries come from the heap's size probe, never from
references between objects.
"""

from dataclasses import dataclass
from typing import Callable, Iterator

from dump_errors import ConsistencyError
from mapped_file import round_up
from mirror import OBJECT_ALIGNMENT, OBJECT_HEADER_SIZE


@dataclass
class HeapObject:
    address: int
    size: int                 # 不含对齐填充

    @property
    def padding(self) -> int:
        return round_up(self.size, OBJECT_ALIGNMENT) - self.size


class HeapBitmap:
    def __init__(self, heap_begin, heap_capacity, name='live bitmap'):
        self.name = name
        self.heap_begin = heap_begin
        self.heap_limit = heap_begin + heap_capacity
        bit_count = round_up(heap_capacity, OBJECT_ALIGNMENT) // OBJECT_ALIGNMENT
        self.bitmap = bytearray((bit_count + 7) // 8)

    def _position(self, address):
        if not self.heap_begin <= address < self.heap_limit:
            raise ConsistencyError(
                f"{self.name}: address {address:#010x} outside "
                f"[{self.heap_begin:#010x}, {self.heap_limit:#010x})")
        offset = address - self.heap_begin
        if offset % OBJECT_ALIGNMENT:
            raise ConsistencyError(f"{self.name}: address {address:#010x} is not object aligned")
        bit_index = offset // OBJECT_ALIGNMENT
        return bit_index >> 3, 1 << (bit_index & 7)

    def set(self, address):
        index, mask = self._position(address)
        self.bitmap[index] |= mask

    def clear(self, address):
        index, mask = self._position(address)
        self.bitmap[index] &= ~mask & 0xff

    def test(self, address) -> bool:
        index, mask = self._position(address)
        return bool(self.bitmap[index] & mask)

    def marked_count(self) -> int:
        return sum(bin(byte).count('1') for byte in self.bitmap)

    def iter_marked(self) -> Iterator[int]:
        """Addresses of all set bits, strictly increasing."""
        for byte_index, byte in enumerate(self.bitmap):
            while byte:
                lowest = byte & -byte
                bit_index = (byte_index << 3) + lowest.bit_length() - 1
                yield self.heap_begin + bit_index * OBJECT_ALIGNMENT
                byte ^= lowest

    def walk(self, callback: Callable[[int], None]):
        for address in self.iter_marked():
            callback(address)


def walk_live_objects(bitmap: HeapBitmap, space, heap, visitor: Callable[[HeapObject], None]):
    """
    Visit every live object of `space` once, in address order.

    The bitmap may cover several spaces; objects of other spaces are skipped
    using the space's own membership test.
    """
    def visit(address):
        if not space.contains(address):
            return
        size = heap.size_of(address)
        if address + size > space.end:
            raise ConsistencyError(
                f"Object at {address:#010x} of size {size} overruns the end of "
                f"{space.path} ({space.end:#010x})")
        visitor(HeapObject(address, size))

    bitmap.walk(visit)


def record_image_allocations(space, heap, bitmap: HeapBitmap) -> int:
    """
    Mark every object of an image space in bitmap by scanning the objects
    back to back from the first one. Returns the number of objects marked.
    """
    count = 0
    address = space.objects_begin
    while address < space.end:
        size = heap.size_of(address)
        if size < OBJECT_HEADER_SIZE:
            raise ConsistencyError(f"Object at {address:#010x} in {space.path} has bogus size {size}")
        if address + size > space.end:
            raise ConsistencyError(
                f"Object at {address:#010x} of size {size} overruns the end of "
                f"{space.path} ({space.end:#010x})")
        bitmap.set(address)
        count += 1
        address += round_up(size, OBJECT_ALIGNMENT)
    return count
