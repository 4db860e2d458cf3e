import hashlib
import zlib

from dexhollow.integrity import adler32, sha1_signature, update_integrity, verify_integrity


def reference_adler32(data, start, end):
    a, b = 1, 0
    for byte in data[start:end]:
        a = (a + byte) % 65521
        b = (b + a) % 65521
    return (b << 16) | a


class TestAdler32:
    def test_empty_range_is_one(self):
        assert adler32(b"", 0, 0) == 1
        assert adler32(b"abc", 1, 1) == 1

    def test_known_value(self):
        assert adler32(b"Wikipedia") == 0x11E60398

    def test_matches_two_accumulator_definition(self, sample_data):
        assert adler32(sample_data, 12) == reference_adler32(sample_data, 12, len(sample_data))
        assert adler32(sample_data, 40, 200) == reference_adler32(sample_data, 40, 200)


class TestUpdateIntegrity:
    def test_recomputes_builder_fields(self, sample_data):
        image = bytearray(sample_data)
        image[8:32] = b"\x00" * 24

        update_integrity(image)

        assert bytes(image) == sample_data

    def test_signature_then_checksum(self, sample_data):
        image = bytearray(sample_data)
        image[-1] ^= 0xFF

        update_integrity(image)

        assert bytes(image[12:32]) == hashlib.sha1(bytes(image[32:])).digest()
        assert int.from_bytes(image[8:12], "little") == zlib.adler32(bytes(image[12:]))

    def test_idempotent(self, sample_data):
        image = bytearray(sample_data)
        image[100] ^= 0x01
        update_integrity(image)
        first = bytes(image)

        update_integrity(image)

        assert bytes(image) == first

    def test_size_unchanged(self, sample_data):
        image = bytearray(sample_data)
        update_integrity(image)
        assert len(image) == len(sample_data)


class TestVerifyIntegrity:
    def test_valid(self, sample_data):
        assert verify_integrity(sample_data)

    def test_bad_signature(self, sample_data):
        image = bytearray(sample_data)
        image[12] ^= 0x01
        assert not verify_integrity(image)

    def test_bad_body(self, sample_data):
        image = bytearray(sample_data)
        image[-1] ^= 0x01
        assert not verify_integrity(image)

    def test_signature_covers_from_file_size(self, sample_data):
        assert sha1_signature(sample_data) == hashlib.sha1(sample_data[32:]).digest()
