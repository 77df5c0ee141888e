# -*- coding:utf-8 -*-
"""
Image 文件空间统计

Accounts every byte of an image file:

    file_bytes = header_bytes + object_bytes + alignment_bytes

plus per class descriptor totals and the size of compiled code and method
side tables referenced from the image.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict

from dump_errors import check
from mapped_file import round_up
from mirror import OBJECT_ALIGNMENT


@dataclass
class ImageStats:
    file_bytes: int = 0

    header_bytes: int = 0
    object_bytes: int = 0
    alignment_bytes: int = 0

    managed_code_bytes: int = 0
    managed_to_native_code_bytes: int = 0
    native_to_managed_code_bytes: int = 0

    register_map_bytes: int = 0
    pc_mapping_table_bytes: int = 0

    dex_instruction_bytes: int = 0

    # descriptor -> {'count': 实例数, 'size': 总字节数}
    descriptor_stats: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {'count': 0, 'size': 0}))

    def accumulate(self, object_bytes, descriptor):
        """Fold one object (size without padding) into the totals."""
        self.object_bytes += object_bytes
        self.alignment_bytes += round_up(object_bytes, OBJECT_ALIGNMENT) - object_bytes
        entry = self.descriptor_stats[descriptor]
        entry['count'] += 1
        entry['size'] += object_bytes

    def finalize(self, file_bytes, header_bytes):
        """Account for the file header and check every byte of the file is covered."""
        self.file_bytes = file_bytes
        self.header_bytes = header_bytes
        self.alignment_bytes += round_up(header_bytes, OBJECT_ALIGNMENT) - header_bytes
        accounted = self.header_bytes + self.object_bytes + self.alignment_bytes
        check(self.file_bytes == accounted,
              f"file_bytes {self.file_bytes} != header_bytes {self.header_bytes} + "
              f"object_bytes {self.object_bytes} + alignment_bytes {self.alignment_bytes} "
              f"(= {accounted})")

    def percent_of_file_bytes(self, size) -> float:
        if self.file_bytes == 0:
            return 0.0
        return size / self.file_bytes * 100

    def percent_of_object_bytes(self, size) -> float:
        if self.object_bytes == 0:
            return 0.0
        return size / self.object_bytes * 100

    @property
    def managed_code_expansion(self) -> float:
        if self.dex_instruction_bytes == 0:
            return 0.0
        return self.managed_code_bytes / self.dex_instruction_bytes

    def render(self, out):
        out.write(f"\tfile_bytes = {self.file_bytes}\n")
        out.write("\n")

        out.write("\tfile_bytes = header_bytes + object_bytes + alignment_bytes\n")
        for name, value in (('header_bytes   ', self.header_bytes),
                            ('object_bytes   ', self.object_bytes),
                            ('alignment_bytes', self.alignment_bytes)):
            out.write(f"\t{name} = {value:10d} ({self.percent_of_file_bytes(value):2.0f}% of file_bytes)\n")
        out.write("\n")
        out.flush()

        out.write("\tobject_bytes = sum of descriptor_to_bytes values below:\n")
        object_bytes_total = 0
        for descriptor in sorted(self.descriptor_stats):
            stats = self.descriptor_stats[descriptor]
            size, count = stats['size'], stats['count']
            average = size / count if count else 0.0
            out.write(f"\t{descriptor:>32s} {size:8d} bytes {count:6d} instances "
                      f"({average:3.0f} bytes/instance) "
                      f"{self.percent_of_object_bytes(size):2.0f}% of object_bytes\n")
            object_bytes_total += size
        out.write("\n")
        out.flush()
        check(self.object_bytes == object_bytes_total,
              f"object_bytes {self.object_bytes} != sum of descriptor bytes {object_bytes_total}")

        for name, value in (('managed_code_bytes          ', self.managed_code_bytes),
                            ('managed_to_native_code_bytes', self.managed_to_native_code_bytes),
                            ('native_to_managed_code_bytes', self.native_to_managed_code_bytes)):
            out.write(f"\t{name} = {value:8d} ({self.percent_of_object_bytes(value):2.0f}% of object_bytes)\n")
        out.write("\n")

        for name, value in (('register_map_bytes    ', self.register_map_bytes),
                            ('pc_mapping_table_bytes', self.pc_mapping_table_bytes)):
            out.write(f"\t{name} = {value:7d} ({self.percent_of_object_bytes(value):2.0f}% of object_bytes)\n")
        out.write("\n")

        out.write(f"\tdex_instruction_bytes = {self.dex_instruction_bytes}\n")
        out.write(f"\tmanaged_code_bytes expansion = {self.managed_code_expansion:.2f}\n")
        out.write("\n")
        out.flush()
