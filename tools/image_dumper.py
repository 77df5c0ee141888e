# -*- coding:utf-8 -*-
"""
Image (.art) 报告

Writes the header, the root table, every live object of the image, the space
accounting and finally the oat file the image was compiled against.
"""

import sys

from dump_errors import FormatError, NotFoundError
from heap_bitmap import walk_live_objects
from image_space import ImageRoot
from image_stats import ImageStats
from mapped_file import format_pointer
from oat_dumper import OatDumper
from object_classifier import ObjectClassifier


class ImageDumper:
    def __init__(self, runtime, host_prefix='', verbose=False, debug_checks=True):
        self.runtime = runtime
        self.host_prefix = host_prefix or ''
        self.verbose = verbose
        self.debug_checks = debug_checks
        self.stats = ImageStats()

    def dump(self, out):
        space = self.runtime.image_space
        header = space.header
        out.write(f"MAGIC: {header.magic_text}\n")
        out.write(f"IMAGE BEGIN: {format_pointer(header.image_begin)}\n")
        out.write(f"OAT CHECKSUM: {header.oat_checksum:08x}\n")
        out.write(f"OAT BEGIN: {format_pointer(header.oat_begin)}\n")
        out.write(f"OAT END: {format_pointer(header.oat_end)}\n")
        out.write("\n")

        self.dump_roots(space, out)
        self.dump_objects(space, out)

        out.write("STATS:\n")
        out.flush()
        self.stats.finalize(space.file_size, space.header_size)
        self.stats.render(out)
        out.write("\n")
        out.flush()

        self.dump_oat_location(space, out)

    def dump_roots(self, space, out):
        heap = self.runtime.heap
        out.write(f"ROOTS: {format_pointer(space.header.image_roots)}\n")
        for root in ImageRoot:
            address = space.get_image_root(root)
            out.write(f"{root.name}: {format_pointer(address)}\n")
            if address and heap.is_object_array(address):
                for i, element in enumerate(heap.object_array_elements(address)):
                    out.write(f"\t{i}: {format_pointer(element)}\n")
        out.write("\n")

    def dump_objects(self, space, out):
        out.write("OBJECTS:\n")
        out.flush()
        runtime = self.runtime
        classifier = ObjectClassifier(
            runtime.heap, self.stats,
            callee_save_methods=runtime.callee_save_methods(),
            code_size=runtime.code_size,
            find_dex_file=runtime.find_dex_file,
            debug_checks=self.debug_checks,
        )

        def visit(obj):
            out.write(classifier.describe(obj).render())

        walk_live_objects(runtime.live_bitmap, space, runtime.heap, visit)
        out.write("\n")
        out.flush()

    def dump_oat_location(self, space, out):
        location = self.runtime.oat_location(space) or ''
        line = f"OAT LOCATION: {location}"
        if self.host_prefix:
            location = self.host_prefix + location
            line += f" ({location})"
        out.write(line + "\n")
        try:
            oat_file = self.runtime.find_oat_file_from_oat_location(location)
        except (NotFoundError, FormatError) as e:
            if self.verbose:
                print(f"Cannot open {location}: {e}", file=sys.stderr)
            out.write("NOT FOUND\n")
            out.flush()
            return
        out.write("\n")
        out.flush()

        OatDumper(self.host_prefix, verbose=self.verbose).dump(oat_file, out)
