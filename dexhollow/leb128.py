from kaitaistruct import KaitaiStruct

from .errors import FormatError, TruncatedError

# A 32-bit value never needs more than 5 groups of 7 bits
MAX_ULEB128_LEN = 5


class Uleb128(KaitaiStruct):
    """Unsigned LEB128 variable-length integer, as used all over the DEX data section.

    Each byte carries 7 bits of the value, least significant group first. The
    high bit of a byte is set when another byte follows.

    The value is read from the current position of the stream, which is left
    right after the last byte of the encoding, so ``len`` bytes are consumed.

    .. seealso::
       Source - https://source.android.com/docs/core/runtime/dex-format#leb128
    """

    def __init__(self, _io, _parent=None, _root=None):
        self._io = _io
        self._parent = _parent
        self._root = _root if _root else self
        self._read()

    def _read(self):
        start = self._io.pos()
        self.value = 0
        self.len = 0

        while True:
            if self.len == MAX_ULEB128_LEN:
                raise FormatError("uleb128 at %s is longer than %s bytes" % (hex(start), MAX_ULEB128_LEN))
            if self._io.is_eof():
                raise TruncatedError("uleb128", start, start + self.len + 1, self._io.size())

            byte = self._io.read_u1()
            self.value |= (byte & 0x7F) << (7 * self.len)
            self.len += 1

            if byte & 0x80 == 0:
                break

        self.value &= 0xFFFFFFFF


def encode_uleb128(value: int) -> bytes:
    if not 0 <= value <= 0xFFFFFFFF:
        raise ValueError("uleb128 value out of range: %s" % value)

    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)
