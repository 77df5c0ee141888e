"""Tests for the analyze.py launcher."""
import subprocess
import sys
from pathlib import Path

ANALYZE = Path(__file__).resolve().parent.parent / 'analyze.py'


def run_analyze(*args):
    return subprocess.run([sys.executable, str(ANALYZE)] + [str(a) for a in args],
                          capture_output=True, text=True)


def test_oat_command(oat_path):
    result = run_analyze('oat', oat_path)
    assert result.returncode == 0, result.stderr
    assert f'--- Dumping oat file: {oat_path} ---' in result.stdout
    assert 'CHECKSUM: cafebabe' in result.stdout
    assert '--- Analysis complete. ---' in result.stdout


def test_image_command_with_output(sample_image, tmp_path):
    report = tmp_path / 'image.txt'
    result = run_analyze('image', sample_image.image_path, '--output', report)
    assert result.returncode == 0, result.stderr
    assert 'OBJECTS:' in report.read_text(encoding='utf-8')


def test_missing_file(tmp_path):
    result = run_analyze('oat', tmp_path / 'missing.oat')
    assert result.returncode == 1
    assert 'Error: oat file not found' in result.stdout


def test_failing_dump_is_reported(tmp_path):
    bad = tmp_path / 'bad.art'
    bad.write_bytes(b'JUNK' * 16)
    result = run_analyze('image', bad)
    assert result.returncode == 1
    assert 'Invalid image header' in result.stderr
    assert 'An error occurred while running oatdump' in result.stderr
