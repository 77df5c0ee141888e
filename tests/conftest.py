"""Pytest configuration. Puts tools/ and tests/ on sys.path for the flat tool modules and the file builders."""
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
for directory in (ROOT / 'tools', ROOT / 'tests'):
    if str(directory) not in sys.path:
        sys.path.insert(0, str(directory))

from builders import sample_dex_builder, write_sample_image, write_sample_oat  # noqa: E402
from image_space import ImageSpace  # noqa: E402
from mirror import Heap  # noqa: E402


@pytest.fixture
def dex_path(tmp_path: Path) -> Path:
    return sample_dex_builder().write(tmp_path / 'core.dex')


@pytest.fixture
def oat_path(tmp_path: Path, dex_path: Path) -> Path:
    path, _ = write_sample_oat(tmp_path, dex_path)
    return path


@pytest.fixture
def sample_image(tmp_path: Path):
    return write_sample_image(tmp_path)


@pytest.fixture
def open_heap():
    """Opens image files as one Heap; every space is closed at teardown."""
    spaces = []

    def _open(*paths):
        for path in paths:
            spaces.append(ImageSpace.open(str(path)))
        return Heap(list(spaces))

    yield _open
    for space in spaces:
        space.close()
