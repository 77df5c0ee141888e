# -*- coding:utf-8 -*-
"""
Type descriptor helpers ("Ljava/lang/String;", "[I", "(IJ)V" ...).
"""

PRIMITIVE_NAMES = {
    'Z': 'boolean',
    'B': 'byte',
    'C': 'char',
    'S': 'short',
    'I': 'int',
    'J': 'long',
    'F': 'float',
    'D': 'double',
    'V': 'void',
}


def pretty_descriptor(descriptor):
    """'[Ljava/lang/String;' -> 'java.lang.String[]'"""
    if not descriptor:
        return 'null'
    dims = 0
    while dims < len(descriptor) and descriptor[dims] == '[':
        dims += 1
    element = descriptor[dims:]
    if element in PRIMITIVE_NAMES:
        name = PRIMITIVE_NAMES[element]
    elif element.startswith('L') and element.endswith(';'):
        name = element[1:-1].replace('/', '.')
    else:
        # not a well formed descriptor, print it as is
        return descriptor
    return name + '[]' * dims


def split_signature(signature):
    """
    Split a method signature into (parameter descriptors, return descriptor).
    '(I[Ljava/lang/String;)V' -> (['I', '[Ljava/lang/String;'], 'V')
    """
    if not signature.startswith('(') or ')' not in signature:
        raise ValueError(f"Malformed method signature: {signature}")
    end = signature.index(')')
    params = []
    i = 1
    while i < end:
        start = i
        while signature[i] == '[':
            i += 1
        if signature[i] == 'L':
            i = signature.index(';', i)
        i += 1
        params.append(signature[start:i])
    return params, signature[end + 1:]


def pretty_method(class_descriptor, name, signature):
    """'void java.lang.Object.wait(long, int)' style rendering."""
    if class_descriptor is None:
        return name
    try:
        params, return_type = split_signature(signature)
    except (ValueError, IndexError):
        return f"{pretty_descriptor(class_descriptor)}.{name} {signature}"
    args = ', '.join(pretty_descriptor(p) for p in params)
    return f"{pretty_descriptor(return_type)} {pretty_descriptor(class_descriptor)}.{name}({args})"


def pretty_field(class_descriptor, name, type_descriptor):
    """'int java.lang.String.count' style rendering."""
    return f"{pretty_descriptor(type_descriptor)} {pretty_descriptor(class_descriptor)}.{name}"
