from typing import Union

DEFAULT_ENCODING = "utf-8"


def to_str(obj: Union[str, bytes], encoding: str = DEFAULT_ENCODING, errors="strict") -> str:
    """If ``obj`` is an instance of ``binary_type``, return
    ``obj.decode(encoding, errors)``, otherwise return ``obj``"""
    return obj.decode(encoding, errors) if isinstance(obj, bytes) else obj


def to_bytes(obj: Union[str, bytes], encoding: str = DEFAULT_ENCODING, errors="strict") -> bytes:
    """If ``obj`` is an instance of ``text_type``, return
    ``obj.encode(encoding, errors)``, otherwise return ``obj``"""
    return obj.encode(encoding, errors) if isinstance(obj, str) else obj


def pad_left(width: int, value) -> str:
    return str(value).rjust(width)


def pad_right(width: int, value) -> str:
    return str(value).ljust(width)


def lower_case_first_character(value: str) -> str:
    return value[:1].lower() + value[1:]
