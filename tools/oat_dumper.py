# -*- coding:utf-8 -*-
"""
OAT 文件结构报告

Cross references every compiled class/method of an oat file with the dex file
it was compiled from and writes a label: value report.
"""

import sys

from dex_file import open_dex_file
from dump_errors import DumpError, FormatError
from mapped_file import format_pointer
from oat_file import ClassStatus, InstructionSet, format_enum


class OatDumper:
    """
    Writes the structure of an oat file.

    host_prefix is prepended to every dex file location before it is opened,
    to translate target paths into host paths.
    """

    def __init__(self, host_prefix='', open_dex=open_dex_file, verbose=False):
        self.host_prefix = host_prefix or ''
        self.open_dex = open_dex
        self.verbose = verbose

    def dump(self, oat_file, out):
        header = oat_file.header
        out.write(f"MAGIC: {header.magic_text}\n")
        out.write(f"CHECKSUM: {header.checksum:08x}\n")
        out.write(f"INSTRUCTION SET: {format_enum(InstructionSet, header.instruction_set)}\n")
        out.write(f"DEX FILE COUNT: {header.dex_file_count}\n")
        out.write(f"EXECUTABLE OFFSET: {header.executable_offset:08x}\n")
        out.write(f"BEGIN: {format_pointer(oat_file.begin)}\n")
        out.write(f"END: {format_pointer(oat_file.end)}\n")
        out.write("\n")
        out.flush()

        for oat_dex_file in oat_file.get_oat_dex_files():
            self.dump_oat_dex_file(oat_dex_file, out)

    def dump_oat_dex_file(self, oat_dex_file, out):
        out.write("OAT DEX FILE:\n")
        location = oat_dex_file.dex_file_location
        line = f"location: {location}"
        if self.host_prefix:
            location = self.host_prefix + location
            line += f" ({location})"
        out.write(line + "\n")
        out.write(f"checksum: {oat_dex_file.dex_file_location_checksum:08x}\n")

        if self.verbose:
            print(f"Opening dex file {location}", file=sys.stderr)
        try:
            dex_file = self.open_dex(location)
        except DumpError as e:
            # a missing container only affects this entry
            if self.verbose:
                print(f"Skipping {location}: {e}", file=sys.stderr)
            out.write("NOT FOUND\n\n")
            out.flush()
            return

        with dex_file:
            for class_def_index in range(dex_file.num_class_defs):
                class_def = dex_file.get_class_def(class_def_index)
                descriptor = dex_file.get_class_descriptor(class_def)
                oat_class = oat_dex_file.get_oat_class(class_def_index)
                status = format_enum(ClassStatus, oat_class.status)
                out.write(f"{class_def_index}: {descriptor} (type_idx={class_def.class_idx}) ({status})\n")
                self.dump_oat_class(oat_class, dex_file, class_def, out)
        out.write("\n")
        out.flush()

    def dump_oat_class(self, oat_class, dex_file, class_def, out):
        class_data = dex_file.get_class_data(class_def)
        if class_data is None:
            # empty class such as a marker interface
            return
        # oat method index N is the Nth method in direct-then-virtual order
        methods = class_data.methods
        if len(methods) > oat_class.method_count:
            raise FormatError(
                f"{dex_file.get_class_descriptor(class_def)} declares {len(methods)} methods "
                f"but its OatClass has {oat_class.method_count}")
        for method_index, method in enumerate(methods):
            oat_method = oat_class.get_oat_method(method_index)
            self.dump_oat_method(method_index, oat_method, dex_file, method.member_idx, out)

    def dump_oat_method(self, method_index, oat_method, dex_file, method_idx, out):
        method_id = dex_file.get_method_id(method_idx)
        name = dex_file.get_method_name(method_id)
        signature = dex_file.get_method_signature(method_id)
        out.write(f"\t{method_index}: {name} {signature} (method_idx={method_idx})\n")
        out.write(f"\t\tcode: {format_pointer(oat_method.code)} "
                  f"(offset={oat_method.code_offset:08x} size={oat_method.code_size})\n")
        out.write(f"\t\tframe_size_in_bytes: {oat_method.frame_size_in_bytes}\n")
        out.write(f"\t\tcore_spill_mask: {oat_method.core_spill_mask:08x}\n")
        out.write(f"\t\tfp_spill_mask: {oat_method.fp_spill_mask:08x}\n")
        out.write(f"\t\tmapping_table: {format_pointer(oat_method.mapping_table)} "
                  f"(offset={oat_method.mapping_table_offset:08x})\n")
        out.write(f"\t\tvmap_table: {format_pointer(oat_method.vmap_table)} "
                  f"(offset={oat_method.vmap_table_offset:08x})\n")
        out.write(f"\t\tgc_map: {format_pointer(oat_method.gc_map)} "
                  f"(offset={oat_method.gc_map_offset:08x})\n")
        out.write(f"\t\tinvoke_stub: {format_pointer(oat_method.invoke_stub)} "
                  f"(offset={oat_method.invoke_stub_offset:08x})\n")
