class FormatError(Exception):
    """Raised when a DEX image is structurally broken. Parsing stops at the first one."""


class BadMagicError(FormatError):
    def __init__(self, magic: bytes):
        super().__init__("Bad DEX magic %r, expected b'dex\\n'" % magic)
        self.magic = magic


class BadHeaderSizeError(FormatError):
    def __init__(self, header_size: int, expected: int):
        super().__init__("Invalid DEX header size %s (expected %s)" % (header_size, expected))
        self.header_size = header_size
        self.expected = expected


class IndexOutOfRangeError(FormatError):
    def __init__(self, table: str, index: int, size: int):
        super().__init__("%s index %s out of range (table has %s entries)" % (table, index, size))
        self.table = table
        self.index = index
        self.size = size


class TruncatedError(FormatError):
    def __init__(self, what: str, offset: int, end: int, size: int):
        super().__init__("%s at %s ends at %s, past end of file (%s bytes)" % (what, hex(offset), hex(end), size))
        self.what = what
        self.offset = offset
        self.end = end
        self.size = size
