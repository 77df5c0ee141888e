# -*- coding:utf-8 -*-
"""
Runtime bootstrap for dumping an image.

Opens the boot image (optional) and the image as spaces of one read-only heap,
marks every object of every space in a shared live bitmap and resolves the
oat and dex files the image refers to. Everything opened here is released by
Runtime.close().
"""

import sys
from typing import Dict, List, Optional

from dex_file import DexFile, open_dex_file
from dump_errors import DumpError, FormatError, NotFoundError
from heap_bitmap import HeapBitmap, record_image_allocations
from image_space import CALLEE_SAVE_ROOTS, ImageRoot, ImageSpace
from mirror import Heap
from oat_file import OatFile


class Runtime:
    def __init__(self, spaces: List[ImageSpace], host_prefix='', verbose=False):
        self.spaces = spaces
        self.host_prefix = host_prefix or ''
        self.verbose = verbose
        self.heap = Heap(spaces)
        self.live_bitmap = HeapBitmap(self.heap.begin, self.heap.end - self.heap.begin)
        for space in spaces:
            count = record_image_allocations(space, self.heap, self.live_bitmap)
            self._log(f"{space.path}: {count} objects at "
                      f"{space.begin:#010x}-{space.end:#010x}")
        self._oat_files: Dict[str, OatFile] = {}
        self._space_oat_files: Dict[str, Optional[OatFile]] = {}
        self._dex_files: Dict[str, Optional[DexFile]] = {}

    @classmethod
    def create(cls, image_path, boot_image_path=None, host_prefix='', verbose=False) -> 'Runtime':
        spaces = []
        try:
            for path in (boot_image_path, image_path):
                if path is None:
                    continue
                if verbose:
                    print(f"Opening image {path}", file=sys.stderr)
                spaces.append(ImageSpace.open(path))
            _check_disjoint(spaces)
            return cls(spaces, host_prefix, verbose)
        except DumpError:
            for space in spaces:
                space.close()
            raise

    def _log(self, message):
        if self.verbose:
            print(message, file=sys.stderr)

    def close(self):
        for dex_file in self._dex_files.values():
            if dex_file is not None:
                dex_file.close()
        self._dex_files.clear()
        for oat_file in self._oat_files.values():
            oat_file.close()
        self._oat_files.clear()
        self._space_oat_files.clear()
        for space in self.spaces:
            space.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def image_space(self) -> ImageSpace:
        """The image being dumped; the boot image, if any, comes before it."""
        return self.spaces[-1]

    def callee_save_methods(self) -> List[int]:
        methods = []
        for space in self.spaces:
            for root in CALLEE_SAVE_ROOTS:
                method = space.get_image_root(root)
                if method:
                    methods.append(method)
        return methods

    def oat_location(self, space: ImageSpace) -> Optional[str]:
        return self.heap.read_string(space.get_image_root(ImageRoot.OAT_LOCATION))

    # ==================== Oat and dex files ====================

    def _space_for_oat_location(self, location) -> ImageSpace:
        for space in reversed(self.spaces):
            space_location = self.oat_location(space)
            if space_location is not None and self.host_prefix + space_location == location:
                return space
        raise NotFoundError(location, "no image space refers to this oat location")

    def find_oat_file_from_oat_location(self, location) -> OatFile:
        """
        Open the oat file at location (host prefix already applied), checked
        against and mapped at the oat range of the image that refers to it.
        NotFoundError when no image space names location.
        """
        oat_file = self._oat_files.get(location)
        if oat_file is not None:
            return oat_file
        space = self._space_for_oat_location(location)
        self._log(f"Opening oat file {location} at {space.header.oat_begin:#010x}")
        oat_file = OatFile.open(location,
                                expected_checksum=space.header.oat_checksum,
                                requested_base=space.header.oat_begin)
        self._oat_files[location] = oat_file
        return oat_file

    def _oat_file_for_space(self, space: ImageSpace) -> Optional[OatFile]:
        if space.path in self._space_oat_files:
            return self._space_oat_files[space.path]
        oat_file = None
        location = self.oat_location(space)
        if location is not None:
            try:
                oat_file = self.find_oat_file_from_oat_location(self.host_prefix + location)
            except (NotFoundError, FormatError) as e:
                # code sizes of this space count as 0
                self._log(f"No oat file for {space.path}: {e}")
        self._space_oat_files[space.path] = oat_file
        return oat_file

    def code_size(self, address) -> int:
        """Byte size of the compiled code or stub at address, 0 when unknown."""
        if not address:
            return 0
        for space in self.spaces:
            if space.header.oat_begin <= address < space.header.oat_end:
                oat_file = self._oat_file_for_space(space)
                if oat_file is None:
                    return 0
                return oat_file.code_size_at(address)
        return 0

    def find_dex_file(self, location) -> Optional[DexFile]:
        """Dex file for a dex cache location; None when it does not exist on this host."""
        if location in self._dex_files:
            return self._dex_files[location]
        path = self.host_prefix + location
        try:
            dex_file = open_dex_file(path)
        except NotFoundError as e:
            self._log(f"Dex file {path} not found: {e}")
            dex_file = None
        self._dex_files[location] = dex_file
        return dex_file


def _check_disjoint(spaces: List[ImageSpace]):
    ordered = sorted(spaces, key=lambda space: space.begin)
    for lower, upper in zip(ordered, ordered[1:]):
        if lower.end > upper.begin:
            raise FormatError(
                f"Image {upper.path} at {upper.begin:#010x} overlaps "
                f"{lower.path} ({lower.begin:#010x}-{lower.end:#010x})")
