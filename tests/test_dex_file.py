"""Tests for the dex reader and the descriptor helpers."""
import sys

import pytest

import dex_file
from builders import DexBuilder, DexMethod
from descriptors import pretty_descriptor, pretty_field, pretty_method, split_signature
from dex_file import ACC_NATIVE, DexFile
from dump_errors import FormatError, NotFoundError


def test_reads_classes_and_methods(dex_path):
    with DexFile.open(str(dex_path)) as dex:
        assert dex.num_class_defs == 2
        foo = dex.get_class_def(0)
        assert dex.get_class_descriptor(foo) == 'Lcom/example/Foo;'
        class_data = dex.get_class_data(foo)
        assert [m.member_idx for m in class_data.direct_methods] == [0, 1]
        assert [m.member_idx for m in class_data.virtual_methods] == [2]
        assert [m.member_idx for m in class_data.methods] == [0, 1, 2]

        run = dex.get_method_id(2)
        assert dex.get_method_name(run) == 'run'
        assert dex.get_method_signature(run) == '(Ljava/lang/String;J)V'
        assert dex.get_method_signature(dex.get_method_id(0)) == '()V'


def test_class_without_class_data(dex_path):
    with DexFile.open(str(dex_path)) as dex:
        marker = dex.get_class_def(1)
        assert dex.get_class_descriptor(marker) == 'Lcom/example/Marker;'
        assert dex.get_class_data(marker) is None


def test_find_code_item(dex_path):
    with DexFile.open(str(dex_path)) as dex:
        assert dex.find_code_item(0).insns_size_in_bytes == 8
        assert dex.find_code_item(2).insns_size_in_code_units == 10
        assert dex.find_code_item(99) is None


def test_method_without_code_item(tmp_path):
    builder = DexBuilder()
    builder.add_class('LNative;', direct_methods=[DexMethod('call', '()V', ACC_NATIVE, insns_units=None)])
    path = builder.write(tmp_path / 'native.dex')
    with DexFile.open(str(path)) as dex:
        method = dex.get_class_data(dex.get_class_def(0)).direct_methods[0]
        assert method.code_off == 0
        assert method.access_flags == ACC_NATIVE
        assert dex.find_code_item(0) is None


def test_delta_encoded_method_indices(tmp_path):
    builder = DexBuilder()
    builder.add_class('LA;', direct_methods=[DexMethod('a%d' % i) for i in range(3)])
    builder.add_class('LB;', direct_methods=[DexMethod('b')], virtual_methods=[DexMethod('c'), DexMethod('d')])
    path = builder.write(tmp_path / 'two.dex')
    with DexFile.open(str(path)) as dex:
        b = dex.get_class_data(dex.get_class_def(1))
        assert [m.member_idx for m in b.direct_methods] == [3]
        assert [m.member_idx for m in b.virtual_methods] == [4, 5]
        assert dex.get_method_name(dex.get_method_id(5)) == 'd'


def test_missing_file(tmp_path):
    with pytest.raises(NotFoundError):
        DexFile.open(str(tmp_path / 'missing.dex'))


def test_bad_magic(tmp_path, dex_path):
    data = bytearray(dex_path.read_bytes())
    data[0:4] = b'xex\n'
    bad = tmp_path / 'bad.dex'
    bad.write_bytes(bytes(data))
    with pytest.raises(FormatError, match='magic'):
        DexFile.open(str(bad))


def test_bad_checksum(tmp_path, dex_path):
    data = bytearray(dex_path.read_bytes())
    data[-1] ^= 0xff
    bad = tmp_path / 'corrupt.dex'
    bad.write_bytes(bytes(data))
    with pytest.raises(FormatError, match='checksum'):
        DexFile.open(str(bad))


def test_truncated_file(tmp_path):
    short = tmp_path / 'short.dex'
    short.write_bytes(b'dex\n035\x00')
    with pytest.raises(FormatError, match='too short'):
        DexFile.open(str(short))


def test_main_lists_classes(monkeypatch, capsys, dex_path):
    monkeypatch.setattr(sys, 'argv', ['dex_file.py', '-f', str(dex_path)])
    dex_file.main()
    out = capsys.readouterr().out
    assert out.splitlines()[0] == '0: Lcom/example/Foo;'
    assert '\trun (Ljava/lang/String;J)V' in out
    assert '1: Lcom/example/Marker;' in out


def test_main_reports_errors(monkeypatch, capsys, tmp_path):
    monkeypatch.setattr(sys, 'argv', ['dex_file.py', '-f', str(tmp_path / 'nope.dex')])
    with pytest.raises(SystemExit) as excinfo:
        dex_file.main()
    assert excinfo.value.code == 1
    assert 'Error:' in capsys.readouterr().err


def test_pretty_descriptors():
    assert pretty_descriptor('[Ljava/lang/String;') == 'java.lang.String[]'
    assert pretty_descriptor('[[I') == 'int[][]'
    assert pretty_descriptor('') == 'null'
    assert split_signature('(I[Ljava/lang/String;J)V') == (['I', '[Ljava/lang/String;', 'J'], 'V')
    assert pretty_method('Ljava/lang/Object;', 'wait', '(JI)V') == 'void java.lang.Object.wait(long, int)'
    assert pretty_method(None, '<runtime method>', '()V') == '<runtime method>'
    assert pretty_field('Ljava/lang/String;', 'count', 'I') == 'int java.lang.String.count'


def test_split_signature_rejects_garbage():
    with pytest.raises(ValueError):
        split_signature('V')
