"""Checksum and signature fields of the DEX header.

Both fields cover the file from just past themselves to the end, so the
signature has to be written before the checksum is computed.
"""
import hashlib
import zlib
from typing import Optional

from .helpers import u4le

CHECKSUM_OFFSET = 8
SIGNATURE_OFFSET = 12
SIGNATURE_SIZE = 20
SIGNED_DATA_OFFSET = SIGNATURE_OFFSET + SIGNATURE_SIZE


def adler32(data, start: int = 0, end: Optional[int] = None) -> int:
    return zlib.adler32(memoryview(data)[start:end]) & 0xFFFFFFFF


def sha1_signature(data) -> bytes:
    return hashlib.sha1(memoryview(data)[SIGNED_DATA_OFFSET:]).digest()


def update_integrity(image: bytearray) -> None:
    image[SIGNATURE_OFFSET:SIGNED_DATA_OFFSET] = sha1_signature(image)
    image[CHECKSUM_OFFSET:SIGNATURE_OFFSET] = u4le(adler32(image, SIGNATURE_OFFSET))


def verify_integrity(data) -> bool:
    stored_checksum = int.from_bytes(data[CHECKSUM_OFFSET:SIGNATURE_OFFSET], "little")
    stored_signature = bytes(data[SIGNATURE_OFFSET:SIGNED_DATA_OFFSET])
    return stored_signature == sha1_signature(data) and stored_checksum == adler32(data, SIGNATURE_OFFSET)
