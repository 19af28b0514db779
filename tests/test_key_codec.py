"""
Tests for API key generation, parsing and checksum verification.
"""
import pytest
from app.core.api_key import (
    KeyCodec,
    RANDOM_BYTES,
    _b32encode,
    hash_api_key,
    verify_api_key,
)
from app.core.exceptions import ChecksumMismatchException, InvalidFormatException

FIXED_TIME = 1767225600.5
B32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"


@pytest.fixture
def codec() -> KeyCodec:
    return KeyCodec(clock=lambda: FIXED_TIME)


def _replace_segment(key_text: str, index: int, value: str) -> str:
    parts = key_text.split("_")
    parts[index] = value
    return "_".join(parts)


def _other_char(c: str) -> str:
    return "A" if c != "A" else "B"


class TestApiKeyHashing:
    """Tests for API key hashing functions."""

    def test_hash_api_key_returns_hex_string(self):
        hashed = hash_api_key("test_api_key_12345")

        assert isinstance(hashed, str)
        assert len(hashed) == 64
        assert all(c in '0123456789abcdef' for c in hashed)

    def test_hash_api_key_consistent(self):
        assert hash_api_key("consistent_key") == hash_api_key("consistent_key")

    def test_verify_api_key(self):
        hashed = hash_api_key("my_secret_api_key")

        assert verify_api_key("my_secret_api_key", hashed) is True
        assert verify_api_key("wrong_key", hashed) is False
        assert verify_api_key("", hashed) is False


class TestKeyGeneration:
    """Tests for KeyCodec.generate."""

    def test_layout(self, codec):
        generated = codec.generate("myapp", "prod")
        parts = generated.key_text.split("_")

        assert len(parts) == 6
        assert parts[0] == "myapp"
        assert parts[1] == "prod"
        assert parts[2] == "v1"
        assert parts[3] == str(int(FIXED_TIME))
        assert len(parts[4]) == 32  # 20 bytes, unpadded base32
        assert len(parts[5]) == 7  # 4 bytes, unpadded base32
        assert "=" not in generated.key_text
        assert all(c in B32_ALPHABET for c in parts[4] + parts[5])

    def test_hash_matches_key_text(self, codec):
        generated = codec.generate("myapp", "dev")

        assert generated.key_hash == hash_api_key(generated.key_text)

    def test_generated_key_verifies(self, codec):
        generated = codec.generate("myapp", "test", version=3)
        parsed = KeyCodec.parse_and_verify(generated.key_text)

        assert parsed == generated.parsed
        assert parsed.version == 3
        assert parsed.timestamp == int(FIXED_TIME)

    def test_keys_are_unique(self, codec):
        keys = {codec.generate("myapp", "dev").key_text for _ in range(50)}

        assert len(keys) == 50

    def test_deterministic_random_source(self):
        codec = KeyCodec(clock=lambda: FIXED_TIME, random_source=lambda n: b"\x00" * n)
        generated = codec.generate("myapp", "dev")

        assert generated.parsed.random_part == _b32encode(b"\x00" * RANDOM_BYTES)
        assert generated.parsed.random_part == "A" * 32

    @pytest.mark.parametrize("prefix,environment,version", [
        ("", "dev", 1),
        ("my_app", "dev", 1),
        ("myapp", "", 1),
        ("myapp", "d_ev", 1),
        ("myapp", "dev", 0),
    ])
    def test_invalid_arguments(self, codec, prefix, environment, version):
        with pytest.raises(ValueError):
            codec.generate(prefix, environment, version=version)


class TestKeyVerification:
    """Tests for KeyCodec.parse_and_verify."""

    @pytest.mark.parametrize("key_text", [
        "",
        "not-a-key",
        "a_b_c_d_e",
        "a_b_c_d_e_f_g",
        "myapp__v1_1767225600_AAAA_AAAA",
    ])
    def test_wrong_shape_is_invalid_format(self, key_text):
        with pytest.raises(InvalidFormatException):
            KeyCodec.parse_and_verify(key_text)

    def test_empty_prefix(self, codec):
        key_text = _replace_segment(codec.generate("myapp", "dev").key_text, 0, "")

        with pytest.raises(InvalidFormatException):
            KeyCodec.parse_and_verify(key_text)

    @pytest.mark.parametrize("version", ["1", "v", "vX", "V1", "v-1", "v١"])
    def test_bad_version(self, codec, version):
        key_text = _replace_segment(codec.generate("myapp", "dev").key_text, 2, version)

        with pytest.raises(InvalidFormatException):
            KeyCodec.parse_and_verify(key_text)

    @pytest.mark.parametrize("timestamp", ["", "12a", "-5", "99999999999", "١٢٣"])
    def test_bad_timestamp(self, codec, timestamp):
        key_text = _replace_segment(codec.generate("myapp", "dev").key_text, 3, timestamp)

        with pytest.raises(InvalidFormatException):
            KeyCodec.parse_and_verify(key_text)

    @pytest.mark.parametrize("random_part", ["", "A" * 31, "A" * 33, "a" * 32, "1" * 32, "A" * 24])
    def test_bad_random_part(self, codec, random_part):
        key_text = _replace_segment(codec.generate("myapp", "dev").key_text, 4, random_part)

        with pytest.raises(InvalidFormatException):
            KeyCodec.parse_and_verify(key_text)

    def test_checksum_character_mutation(self, codec):
        key_text = codec.generate("myapp", "dev").key_text
        checksum = key_text.split("_")[5]

        for i, c in enumerate(checksum[:6]):
            mutated = checksum[:i] + _other_char(c) + checksum[i + 1:]
            with pytest.raises(ChecksumMismatchException):
                KeyCodec.parse_and_verify(_replace_segment(key_text, 5, mutated))

    def test_undecodable_checksum(self, codec):
        key_text = _replace_segment(codec.generate("myapp", "dev").key_text, 5, "!!!!!!!")

        with pytest.raises(ChecksumMismatchException):
            KeyCodec.parse_and_verify(key_text)

    @pytest.mark.parametrize("index,value", [
        (0, "other"),
        (1, "prod"),
        (2, "v2"),
        (3, "1767225601"),
    ])
    def test_other_segment_mutation(self, codec, index, value):
        key_text = _replace_segment(codec.generate("myapp", "dev").key_text, index, value)

        with pytest.raises(ChecksumMismatchException):
            KeyCodec.parse_and_verify(key_text)

    def test_random_part_mutation(self, codec):
        key_text = codec.generate("myapp", "dev").key_text
        random_part = key_text.split("_")[4]
        mutated = _other_char(random_part[0]) + random_part[1:]

        with pytest.raises(ChecksumMismatchException):
            KeyCodec.parse_and_verify(_replace_segment(key_text, 4, mutated))
