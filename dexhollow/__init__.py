"""Extract the code of one method from a DEX file and replace it with NOPs."""

__version__ = "0.1.0"

from .dex import Dex, load
from .errors import BadHeaderSizeError, BadMagicError, FormatError, IndexOutOfRangeError, TruncatedError
from .hollow import HollowStatus, hollow_file, hollow_method, pack_code_item_record

__all__ = [
    'Dex',
    'load',
    'FormatError',
    'BadMagicError',
    'BadHeaderSizeError',
    'IndexOutOfRangeError',
    'TruncatedError',
    'HollowStatus',
    'hollow_file',
    'hollow_method',
    'pack_code_item_record',
]
