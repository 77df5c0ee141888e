"""Tests for heap object classification and method metadata checks."""
import pytest

from builders import ImageBuilder
from dex_file import ACC_ABSTRACT, ACC_NATIVE, ACC_PUBLIC, DexFile
from dump_errors import ConsistencyError, NotFoundError
from heap_bitmap import HeapObject
from image_space import CALLEE_SAVE_ROOTS
from image_stats import ImageStats
from object_classifier import ObjectClassifier, ObjectKind


@pytest.fixture
def dex_files():
    opened = {}

    def find(location):
        if location not in opened:
            opened[location] = DexFile.open(location)
        return opened[location]

    yield find
    for dex in opened.values():
        dex.close()


def describe(heap, address, **kwargs):
    classifier = ObjectClassifier(heap, ImageStats(), **kwargs)
    return classifier.describe(HeapObject(address, heap.size_of(address)))


def test_kind_precedence(sample_image, open_heap, dex_files):
    heap = open_heap(sample_image.image_path)
    objects = sample_image.objects
    classifier = ObjectClassifier(heap, ImageStats(), find_dex_file=dex_files)
    assert classifier.classify(objects['foo_class']) is ObjectKind.CLASS
    # java.lang.Class is its own class
    assert classifier.classify(heap.class_of(objects['foo_class']).address) is ObjectKind.CLASS
    assert classifier.classify(objects['run']) is ObjectKind.METHOD
    assert classifier.classify(objects['init']) is ObjectKind.METHOD
    assert classifier.classify(objects['field']) is ObjectKind.FIELD
    assert classifier.classify(objects['instance']) is ObjectKind.OBJECT
    assert classifier.classify(objects['dex_cache']) is ObjectKind.OBJECT
    location = heap.read_u32(objects['dex_cache'] + 8)
    assert classifier.classify(location) is ObjectKind.STRING
    assert classifier.classify(heap.read_u32(location + 8)) is ObjectKind.ARRAY


def test_class_summary(sample_image, open_heap):
    heap = open_heap(sample_image.image_path)
    foo = sample_image.objects['foo_class']
    description = describe(heap, foo)
    assert description.summary == '0x%08x: CLASS Lcom/example/Foo; (INITIALIZED)' % foo
    class_class = heap.class_of(foo).address
    assert description.details == ['class 0x%08x: Ljava/lang/Class;' % class_class]
    assert description.render() == description.summary + '\n\tclass 0x%08x: Ljava/lang/Class;\n' % class_class


def test_string_array_field_object_summaries(sample_image, open_heap):
    heap = open_heap(sample_image.image_path)
    objects = sample_image.objects
    location = heap.read_u32(objects['dex_cache'] + 8)
    assert describe(heap, location).summary.endswith(f': STRING {sample_image.dex_path}')
    chars = heap.read_u32(location + 8)
    assert describe(heap, chars).summary.endswith(f': ARRAY {len(str(sample_image.dex_path))}')
    assert describe(heap, objects['field']).summary.endswith(': FIELD int com.example.Foo.count')
    instance = describe(heap, objects['instance'])
    assert instance.summary.endswith(': OBJECT')
    assert instance.descriptor == 'Lcom/example/Foo;'


def test_concrete_method(sample_image, open_heap, dex_files):
    heap = open_heap(sample_image.image_path)
    stats = ImageStats()
    run = sample_image.objects['run']
    classifier = ObjectClassifier(heap, stats, find_dex_file=dex_files,
                                  code_size=lambda address: 32 if address == heap.get_method(run).code else 12)
    description = classifier.describe(HeapObject(run, heap.size_of(run)))
    assert description.kind is ObjectKind.METHOD
    assert description.summary.endswith(': METHOD void com.example.Foo.run(java.lang.String, long)')
    method = heap.get_method(run)
    assert description.details[1:] == [
        'CODE     0x%08x' % method.code,
        'JNI STUB 0x%08x' % method.invoke_stub,
        'SIZE Code=20 GC=8 Mapping=10',
    ]
    assert stats.dex_instruction_bytes == 20
    assert stats.register_map_bytes == 8
    assert stats.pc_mapping_table_bytes == 10
    assert stats.managed_code_bytes == 32
    assert stats.native_to_managed_code_bytes == 12
    assert stats.descriptor_stats['Ljava/lang/reflect/Method;'] == {'count': 1, 'size': 56}


def test_constructor_is_a_method(sample_image, open_heap, dex_files):
    heap = open_heap(sample_image.image_path)
    description = describe(heap, sample_image.objects['init'], find_dex_file=dex_files)
    assert description.kind is ObjectKind.METHOD
    assert description.descriptor == 'Ljava/lang/reflect/Constructor;'
    assert description.details[-1] == 'SIZE Code=8 GC=4 Mapping=6'


def test_native_methods(sample_image, open_heap):
    heap = open_heap(sample_image.image_path)
    registered = describe(heap, sample_image.objects['native_registered'])
    assert 'NATIVE REGISTERED 0x40001000' in registered.details
    unregistered = describe(heap, sample_image.objects['native_unregistered'])
    assert unregistered.details[-1] == 'NATIVE UNREGISTERED'
    assert not any(d.startswith('SIZE') for d in unregistered.details)


def test_native_code_counted_once(sample_image, open_heap):
    heap = open_heap(sample_image.image_path)
    stats = ImageStats()
    classifier = ObjectClassifier(heap, stats, code_size=lambda address: 8)
    for name in ('native_registered', 'native_unregistered'):
        address = sample_image.objects[name]
        classifier.describe(HeapObject(address, heap.size_of(address)))
    assert stats.managed_to_native_code_bytes == 8
    assert stats.native_to_managed_code_bytes == 8
    assert stats.managed_code_bytes == 0


def test_abstract_method(sample_image, open_heap):
    heap = open_heap(sample_image.image_path)
    description = describe(heap, sample_image.objects['abstract'])
    assert description.details[1:] == ['CODE     0x00000000', 'JNI STUB 0x00000000', 'ABSTRACT']


def test_callee_save_method(sample_image, open_heap):
    heap = open_heap(sample_image.image_path)
    space = heap.spaces[0]
    callee_saves = [space.get_image_root(root) for root in CALLEE_SAVE_ROOTS]
    description = describe(heap, callee_saves[0], callee_save_methods=callee_saves)
    assert description.summary.endswith(': METHOD <runtime method>')
    assert description.details[1:] == ['CALLEE SAVE METHOD']


def _image_with_method(tmp_path, open_heap, **method_fields):
    builder = ImageBuilder()
    dex_cache = builder.new_dex_cache(str(tmp_path / 'missing.dex'))
    klass = builder.define_class('LBroken;', dex_cache=dex_cache)
    method = builder.new_method(klass, 'm', '()V', **method_fields)
    heap = open_heap(builder.write(tmp_path / 'broken.art'))
    return heap, method


def test_unregistered_native_with_gc_map_fails(tmp_path, open_heap):
    heap, method = _image_with_method(tmp_path, open_heap, access_flags=ACC_NATIVE, gc_map=0x60000100)
    with pytest.raises(ConsistencyError, match='GC map'):
        describe(heap, method)


def test_abstract_with_mapping_table_fails(tmp_path, open_heap):
    heap, method = _image_with_method(tmp_path, open_heap, access_flags=ACC_ABSTRACT,
                                      mapping_table=0x60000100)
    with pytest.raises(ConsistencyError, match='mapping table'):
        describe(heap, method)


def test_concrete_without_gc_map_fails(tmp_path, open_heap):
    heap, method = _image_with_method(tmp_path, open_heap, access_flags=ACC_PUBLIC)
    with pytest.raises(ConsistencyError, match='missing GC map'):
        describe(heap, method)


def test_concrete_without_mapping_table_fails(tmp_path, open_heap):
    heap, method = _image_with_method(tmp_path, open_heap, access_flags=ACC_PUBLIC,
                                      gc_map=0x60000100, gc_map_length=4)
    with pytest.raises(ConsistencyError, match='missing mapping table'):
        describe(heap, method)
    # with checks off the method reaches the dex lookup
    with pytest.raises(NotFoundError, match='missing.dex'):
        describe(heap, method, debug_checks=False)


def test_debug_checks_off_skips_assertions(tmp_path, open_heap):
    heap, method = _image_with_method(tmp_path, open_heap, access_flags=ACC_NATIVE, gc_map=0x60000100)
    description = describe(heap, method, debug_checks=False)
    assert description.details[-1] == 'NATIVE UNREGISTERED'


def test_concrete_method_without_dex_file(tmp_path, open_heap):
    heap, method = _image_with_method(tmp_path, open_heap, access_flags=ACC_PUBLIC,
                                      gc_map=0x60000100, gc_map_length=4,
                                      mapping_table=0x60000200, mapping_table_length=6)
    with pytest.raises(NotFoundError, match='missing.dex'):
        describe(heap, method)
