"""Tests for the oat file report."""
import io

import pytest

from builders import DexBuilder, DexMethod, OatBuilder, OatClassSpec, OatMethodSpec
from dump_errors import FormatError
from oat_dumper import OatDumper
from oat_file import OatFile


def dump(path, host_prefix=''):
    out = io.StringIO()
    with OatFile.open(str(path)) as oat:
        OatDumper(host_prefix).dump(oat, out)
    return out.getvalue()


def test_header_lines(oat_path):
    lines = dump(oat_path).splitlines()
    assert lines[:8] == [
        'MAGIC: oat\\n001',
        'CHECKSUM: cafebabe',
        'INSTRUCTION SET: THUMB2',
        'DEX FILE COUNT: 1',
        'EXECUTABLE OFFSET: 00001000',
        'BEGIN: 0x00000000',
        'END: 0x%08x' % oat_path.stat().st_size,
        '',
    ]


def test_checksum_is_eight_lowercase_hex_digits(tmp_path):
    oat = OatBuilder(checksum=0xDEADBEEF)
    path = oat.write(tmp_path / 'empty.oat')
    assert 'CHECKSUM: deadbeef\n' in dump(path)
    assert 'OAT DEX FILE:' not in dump(path)


def test_classes_and_methods_in_declaration_order(oat_path, dex_path):
    report = dump(oat_path)
    assert f'location: {dex_path}\n' in report
    assert 'checksum: 1234abcd\n' in report
    assert '0: Lcom/example/Foo; (type_idx=' in report
    assert '(VERIFIED)' in report
    assert '1: Lcom/example/Marker; (type_idx=' in report

    method_lines = [line for line in report.splitlines() if line.startswith('\t') and not line.startswith('\t\t')]
    assert method_lines == [
        '\t0: <init> ()V (method_idx=0)',
        '\t1: helper (I)I (method_idx=1)',
        '\t2: run (Ljava/lang/String;J)V (method_idx=2)',
    ]


def test_method_details(oat_path):
    report = dump(oat_path)
    block = report.split('\t0: <init> ()V (method_idx=0)\n')[1].split('\t1: ')[0]
    assert block.splitlines() == [
        '\t\tcode: 0x00001004 (offset=00001004 size=16)',
        '\t\tframe_size_in_bytes: 32',
        '\t\tcore_spill_mask: 00004de0',
        '\t\tfp_spill_mask: 00000000',
        '\t\tmapping_table: 0x00000200 (offset=00000200)',
        '\t\tvmap_table: 0x00000210 (offset=00000210)',
        '\t\tgc_map: 0x00000220 (offset=00000220)',
        '\t\tinvoke_stub: 0x%08x (offset=%08x)' % (0x1004 + 16 + 4 + 32 + 4 + 8 + 4,
                                                  0x1004 + 16 + 4 + 32 + 4 + 8 + 4),
    ]


def test_missing_dex_is_not_found_and_dump_continues(tmp_path, dex_path):
    oat = OatBuilder()
    oat.add_dex_file(tmp_path / 'gone.dex', classes=[])
    oat.add_dex_file(dex_path, classes=[OatClassSpec(methods=[OatMethodSpec()] * 3), OatClassSpec()])
    path = oat.write(tmp_path / 'two.oat')
    report = dump(path)
    assert report.count('OAT DEX FILE:') == 2
    first, second = report.split('OAT DEX FILE:\n')[1:]
    assert first.endswith('NOT FOUND\n\n')
    assert '0: Lcom/example/Foo;' in second


def test_unparseable_dex_is_not_found(tmp_path):
    garbage = tmp_path / 'garbage.dex'
    garbage.write_bytes(b'not a dex file at all')
    oat = OatBuilder()
    oat.add_dex_file(garbage, classes=[])
    report = dump(oat.write(tmp_path / 'g.oat'))
    assert 'NOT FOUND' in report


def test_entries_in_file_order(tmp_path):
    oat = OatBuilder()
    for name in ('a.dex', 'b.dex', 'c.dex'):
        oat.add_dex_file('/system/framework/' + name)
    report = dump(oat.write(tmp_path / 'three.oat'))
    assert report.count('OAT DEX FILE:') == 3
    assert report.index('a.dex') < report.index('b.dex') < report.index('c.dex')


def test_host_prefix(tmp_path, dex_path):
    oat = OatBuilder()
    oat.add_dex_file('/core.dex', classes=[OatClassSpec(methods=[OatMethodSpec()] * 3), OatClassSpec()])
    path = oat.write(tmp_path / 'prefixed.oat')
    report = dump(path, host_prefix=str(tmp_path))
    assert f'location: /core.dex ({tmp_path}/core.dex)\n' in report
    assert 'NOT FOUND' not in report
    assert '\t2: run ' in report


def test_too_few_compiled_methods(tmp_path):
    builder = DexBuilder()
    builder.add_class('LA;', direct_methods=[DexMethod('a'), DexMethod('b')])
    dex = builder.write(tmp_path / 'a.dex')
    oat = OatBuilder()
    oat.add_dex_file(dex, classes=[OatClassSpec(methods=[OatMethodSpec()])])
    with pytest.raises(FormatError, match='declares 2 methods'):
        dump(oat.write(tmp_path / 'short.oat'))
