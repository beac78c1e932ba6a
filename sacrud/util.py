#
import re
import secrets
import unicodedata
from typing import Callable

ACCENTS = re.compile("[\u0300-\u036f]")


class ClassPropertyDescriptor:
    """
    Read-only property on the class
    """

    def __init__(self, fget: classmethod) -> None:
        self.fget = fget

    def __get__(self, obj, klass=None):
        if klass is None:
            klass = type(obj)
        return self.fget.__get__(obj, klass)()


def classproperty(func: Callable) -> ClassPropertyDescriptor:
    """
    classproperty
    """
    if not isinstance(func, (classmethod, staticmethod)):
        func = classmethod(func)

    return ClassPropertyDescriptor(func)


def generate_id(length: int = 10) -> str:
    """
    Random identifier, used for transactions and serializer tickets
    """
    return secrets.token_hex(length // 2 + 1)[:length]


def strip_accents(text: str) -> str:
    """
    Decompose `text` and drop the combining diacritical marks
    """
    return ACCENTS.sub("", unicodedata.normalize("NFD", text))


def is_link_value(value) -> bool:
    """
    Association values that refer to existing entities: an id or a list of ids / [id, through] pairs,
    nested objects describe new entities instead
    """
    if isinstance(value, (list, tuple)):
        return not any(isinstance(item, dict) for item in value)
    return isinstance(value, (int, str)) and not isinstance(value, bool)


def is_nested_value(value) -> bool:
    if isinstance(value, dict):
        return True
    return isinstance(value, (list, tuple)) and bool(value) and all(isinstance(item, dict) for item in value)
