# -*- coding:utf-8 -*-
"""
堆对象分类与描述

Decides what each live object of an image is (class, method, field, array,
string or plain object), renders its one-line summary plus detail lines, and
folds its sizes into ImageStats.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from descriptors import pretty_field, pretty_method
from dump_errors import ConsistencyError, NotFoundError, check
from heap_bitmap import HeapObject
from image_stats import ImageStats
from mapped_file import format_pointer
from mirror import Heap, MirrorClass, MirrorMethod
from oat_file import ClassStatus, format_enum

METHOD_DESCRIPTORS = ('Ljava/lang/reflect/Method;', 'Ljava/lang/reflect/Constructor;')
FIELD_DESCRIPTOR = 'Ljava/lang/reflect/Field;'
STRING_DESCRIPTOR = 'Ljava/lang/String;'


class ObjectKind(Enum):
    CLASS = 'CLASS'
    METHOD = 'METHOD'
    FIELD = 'FIELD'
    ARRAY = 'ARRAY'
    STRING = 'STRING'
    OBJECT = 'OBJECT'


@dataclass
class ObjectDescription:
    kind: ObjectKind
    summary: str              # "0x70000020: CLASS Ljava/lang/Object; (INITIALIZED)"
    descriptor: str           # descriptor of the object's class
    details: List[str] = field(default_factory=list)

    def render(self) -> str:
        lines = [self.summary]
        lines.extend('\t' + detail for detail in self.details)
        return '\n'.join(lines) + '\n'


class ObjectClassifier:
    """
    Describes heap objects of one image.

    code_size(address) returns the byte size of the compiled code or stub at
    address (0 when unknown); find_dex_file(location) returns the opened dex
    file for a dex cache location, or None.
    """

    def __init__(self, heap: Heap, stats: ImageStats,
                 callee_save_methods=(),
                 code_size: Optional[Callable[[int], int]] = None,
                 find_dex_file: Optional[Callable[[str], object]] = None,
                 debug_checks=True):
        self.heap = heap
        self.stats = stats
        self.callee_save_methods = frozenset(callee_save_methods)
        self.code_size = code_size or (lambda address: 0)
        self.find_dex_file = find_dex_file or (lambda location: None)
        self.debug_checks = debug_checks
        # stubs and shared code are counted once
        self._counted_code = set()

    def classify(self, address) -> ObjectKind:
        klass = self.heap.class_of(address)
        if klass.is_class_class:
            return ObjectKind.CLASS
        if klass.descriptor in METHOD_DESCRIPTORS:
            return ObjectKind.METHOD
        if klass.descriptor == FIELD_DESCRIPTOR:
            return ObjectKind.FIELD
        if klass.is_array_class:
            return ObjectKind.ARRAY
        if klass.descriptor == STRING_DESCRIPTOR:
            return ObjectKind.STRING
        return ObjectKind.OBJECT

    def describe(self, obj: HeapObject) -> ObjectDescription:
        heap = self.heap
        address = obj.address
        klass = heap.class_of(address)
        kind = self.classify(address)

        self.stats.accumulate(obj.size, klass.descriptor)

        if kind is ObjectKind.CLASS:
            described = heap.get_class(address)
            text = f"CLASS {described.descriptor} ({format_enum(ClassStatus, described.status)})"
        elif kind is ObjectKind.METHOD:
            method = heap.get_method(address)
            text = f"METHOD {self._pretty_method(method)}"
        elif kind is ObjectKind.FIELD:
            mirror_field = heap.get_field(address)
            declaring = None
            if mirror_field.declaring_class:
                declaring = heap.get_class(mirror_field.declaring_class).descriptor
            text = f"FIELD {pretty_field(declaring, mirror_field.name, mirror_field.type_descriptor)}"
        elif kind is ObjectKind.ARRAY:
            text = f"ARRAY {heap.array_length(address)}"
        elif kind is ObjectKind.STRING:
            text = f"STRING {heap.read_string(address)}"
        else:
            text = "OBJECT"

        description = ObjectDescription(
            kind=kind,
            summary=f"{format_pointer(address)}: {text}",
            descriptor=klass.descriptor,
            details=[f"class {format_pointer(klass.address)}: {klass.descriptor}"],
        )
        if kind is ObjectKind.METHOD:
            description.details.extend(self._method_details(method))
        return description

    def _pretty_method(self, method: MirrorMethod) -> str:
        if method.declaring_class == 0:
            return pretty_method(None, method.name, method.signature)
        declaring: MirrorClass = self.heap.get_class(method.declaring_class)
        return pretty_method(declaring.descriptor, method.name, method.signature)

    def _count_code(self, address, attribute):
        if not address or address in self._counted_code:
            return
        self._counted_code.add(address)
        setattr(self.stats, attribute, getattr(self.stats, attribute) + self.code_size(address))

    def _check(self, condition, method, what):
        if self.debug_checks:
            check(condition, f"{what}: {self._pretty_method(method)}")

    def _check_no_gc_map(self, method: MirrorMethod):
        self._check(method.gc_map == 0, method, "unexpected GC map")
        self._check(method.gc_map_length == 0, method, "unexpected GC map length")
        self._check(method.mapping_table == 0, method, "unexpected mapping table")

    def _method_details(self, method: MirrorMethod) -> List[str]:
        details = []
        is_callee_save = method.address in self.callee_save_methods
        if not is_callee_save:
            details.append(f"CODE     {format_pointer(method.code)}")
            details.append(f"JNI STUB {format_pointer(method.invoke_stub)}")
            self._count_code(method.invoke_stub, 'native_to_managed_code_bytes')

        if method.is_native:
            if method.is_registered:
                details.append(f"NATIVE REGISTERED {format_pointer(method.native_method)}")
            else:
                details.append("NATIVE UNREGISTERED")
            self._check_no_gc_map(method)
            self._count_code(method.code, 'managed_to_native_code_bytes')
        elif method.is_abstract:
            details.append("ABSTRACT")
            self._check_no_gc_map(method)
        elif is_callee_save:
            details.append("CALLEE SAVE METHOD")
            self._check_no_gc_map(method)
        else:
            self._check(method.gc_map != 0, method, "missing GC map")
            self._check(method.gc_map_length != 0, method, "empty GC map")
            self._check(method.mapping_table != 0, method, "missing mapping table")

            register_map_bytes = method.gc_map_length
            pc_mapping_table_bytes = method.mapping_table_length
            dex_instruction_bytes = self._dex_instruction_bytes(method)
            self.stats.register_map_bytes += register_map_bytes
            self.stats.pc_mapping_table_bytes += pc_mapping_table_bytes
            self.stats.dex_instruction_bytes += dex_instruction_bytes
            self._count_code(method.code, 'managed_code_bytes')
            details.append(f"SIZE Code={dex_instruction_bytes} GC={register_map_bytes} "
                           f"Mapping={pc_mapping_table_bytes}")
        return details

    def _dex_instruction_bytes(self, method: MirrorMethod) -> int:
        """Bytecode size of a concrete method, from the dex file of its declaring class."""
        if method.declaring_class == 0:
            raise ConsistencyError(f"Method at {format_pointer(method.address)} has no declaring class")
        declaring = self.heap.get_class(method.declaring_class)
        location = self.heap.dex_cache_location(declaring.dex_cache)
        if location is None:
            raise ConsistencyError(f"{declaring.descriptor} has no dex cache")
        dex_file = self.find_dex_file(location)
        if dex_file is None:
            raise NotFoundError(location, f"dex file of {declaring.descriptor}")
        code_item = dex_file.find_code_item(method.dex_method_index)
        if code_item is None:
            raise ConsistencyError(
                f"No code item for method_idx {method.dex_method_index} in {location}: "
                f"{self._pretty_method(method)}")
        return code_item.insns_size_in_bytes
