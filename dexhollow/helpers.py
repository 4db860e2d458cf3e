import os
import tempfile
from typing import Iterable, Tuple

from .errors import FormatError


def u2le(x: int) -> bytes:
    return x.to_bytes(2, "little")


def u4le(x: int) -> bytes:
    return x.to_bytes(4, "little")


def units_to_bytes(units: Iterable[int]) -> bytes:
    return b"".join(u2le(unit) for unit in units)


def format_code_units(units: Iterable[int]) -> str:
    return " ".join("%04X" % unit for unit in units)


def _continuation(raw: bytes, i: int) -> int:
    if i >= len(raw):
        raise FormatError("MUTF-8 sequence cut off at byte %s" % i)
    return raw[i] & 0b00111111


def decode_mutf8(raw: bytes) -> str:
    """Decode DEX "modified UTF-8" up to the first NUL byte.

    Only 1, 2 and 3 byte forms exist. Code points above U+FFFF are stored as
    two 3-byte surrogates; those pairs are joined back into one character.
    """
    result = []
    i = 0

    while i < len(raw):
        byte = raw[i]

        if byte == 0:
            break
        elif byte & 0b10000000 == 0:  # 1-byte character
            result.append(byte)
            i += 1
        elif byte & 0b11100000 == 0b11000000:  # 2-byte character
            result.append(((byte & 0b00011111) << 6) | _continuation(raw, i + 1))
            i += 2
        elif byte & 0b11110000 == 0b11100000:  # 3-byte character
            result.append(((byte & 0b00001111) << 12) | (_continuation(raw, i + 1) << 6) | _continuation(raw, i + 2))
            i += 3
        else:
            raise FormatError("Invalid MUTF-8 lead byte %s at %s" % (hex(byte), i))

    chars = []
    i = 0
    while i < len(result):
        code = result[i]
        if 0xD800 <= code <= 0xDBFF and i + 1 < len(result) and 0xDC00 <= result[i + 1] <= 0xDFFF:
            code = 0x10000 + ((code - 0xD800) << 10) + (result[i + 1] - 0xDC00)
            i += 1
        chars.append(chr(code))
        i += 1

    return "".join(chars)


def _stage_file(path: str, data: bytes) -> str:
    directory = os.path.dirname(os.path.abspath(path))
    with tempfile.NamedTemporaryFile(dir=directory, prefix=".dexhollow-", delete=False) as temp:
        try:
            temp.write(data)
        except BaseException:
            temp.close()
            os.unlink(temp.name)
            raise
    return temp.name


def write_files_atomic(files: Iterable[Tuple[str, bytes]]) -> None:
    """Write each ``(path, data)`` pair to a sibling temp file, then move them all into place.

    If staging fails no target is touched. If a move fails the targets already moved are removed again.
    """
    staged = []
    moved = []
    try:
        for path, data in files:
            staged.append((_stage_file(path, data), path))
        for temp_path, path in staged:
            os.replace(temp_path, path)
            moved.append(path)
    except OSError:
        for temp_path, path in staged:
            os.unlink(path if path in moved else temp_path)
        raise


def write_file_atomic(path: str, data: bytes) -> None:
    """Write ``data`` to a sibling temp file and move it over ``path``."""
    write_files_atomic([(path, data)])
