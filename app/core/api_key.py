"""
API key text encoding and integrity checks.

Key layout::

    prefix_environment_v{version}_{unixTimestamp}_{base32(20 random bytes)}_{checksum}

The checksum is the first 4 bytes of SHA-256 over prefix, environment,
"v{version}", the timestamp digits and the raw random bytes, base32 encoded
without padding. Nothing here performs I/O.
"""
import base64
import binascii
import secrets
import time
from dataclasses import dataclass
from hashlib import sha256
from typing import Callable, Optional
from app.core.exceptions import ChecksumMismatchException, InvalidFormatException

SEPARATOR = "_"
RANDOM_BYTES = 20
CHECKSUM_BYTES = 4
SEGMENT_COUNT = 6
MAX_TIMESTAMP = 2 ** 32 - 1


def hash_api_key(api_key: str) -> str:
    """
    Hash an API key for storage using SHA256.
    API keys carry 160 bits of randomness, so a fast digest is enough.
    """
    return sha256(api_key.encode('utf-8')).hexdigest()


def verify_api_key(plain_key: str, hashed_key: str) -> bool:
    """Verify an API key against its hash using constant-time comparison."""
    return secrets.compare_digest(hash_api_key(plain_key), hashed_key)


def _b32encode(data: bytes) -> str:
    return base64.b32encode(data).decode("ascii").rstrip("=")


def _b32decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 8)
    return base64.b32decode(text + padding, casefold=False)


def compute_checksum(prefix: str, environment: str, version_segment: str,
                     timestamp_segment: str, random_bytes: bytes) -> bytes:
    hasher = sha256()
    hasher.update(prefix.encode("utf-8"))
    hasher.update(environment.encode("utf-8"))
    hasher.update(version_segment.encode("utf-8"))
    hasher.update(timestamp_segment.encode("utf-8"))
    hasher.update(random_bytes)
    return hasher.digest()[:CHECKSUM_BYTES]


@dataclass(frozen=True)
class ParsedKey:
    prefix: str
    environment: str
    version: int
    timestamp: int
    random_part: str
    checksum: str


@dataclass(frozen=True)
class GeneratedKey:
    key_text: str
    key_hash: str
    parsed: ParsedKey


class KeyCodec:
    """Generates key text and verifies its structure and checksum."""

    def __init__(self, clock: Optional[Callable[[], float]] = None,
                 random_source: Optional[Callable[[int], bytes]] = None):
        self._clock = clock or time.time
        self._random = random_source or secrets.token_bytes

    def generate(self, prefix: str, environment: str, version: int = 1) -> GeneratedKey:
        """
        Produce a new key.

        Raises:
            ValueError: if prefix/environment are empty or contain the separator,
                or version is not positive
        """
        for label, value in (("prefix", prefix), ("environment", environment)):
            if not value or SEPARATOR in value:
                raise ValueError(f"{label} must be non-empty and must not contain '{SEPARATOR}'")
        if version < 1:
            raise ValueError("version must be >= 1")

        random_bytes = self._random(RANDOM_BYTES)
        timestamp = int(self._clock()) & MAX_TIMESTAMP
        version_segment = f"v{version}"
        timestamp_segment = str(timestamp)
        random_part = _b32encode(random_bytes)
        checksum = _b32encode(compute_checksum(
            prefix, environment, version_segment, timestamp_segment, random_bytes
        ))

        key_text = SEPARATOR.join(
            [prefix, environment, version_segment, timestamp_segment, random_part, checksum]
        )
        parsed = ParsedKey(
            prefix=prefix,
            environment=environment,
            version=version,
            timestamp=timestamp,
            random_part=random_part,
            checksum=checksum,
        )
        return GeneratedKey(key_text=key_text, key_hash=hash_api_key(key_text), parsed=parsed)

    @staticmethod
    def parse_and_verify(key_text: str) -> ParsedKey:
        """
        Check layout and checksum of key text.

        Raises:
            InvalidFormatException: wrong segment count or malformed segment
            ChecksumMismatchException: checksum does not match the other segments
        """
        if not key_text or not isinstance(key_text, str):
            raise InvalidFormatException()

        parts = key_text.split(SEPARATOR)
        if len(parts) != SEGMENT_COUNT:
            raise InvalidFormatException()

        prefix, environment, version_segment, timestamp_segment, random_part, checksum_part = parts
        if not prefix or not environment:
            raise InvalidFormatException()

        version_digits = version_segment[1:]
        if not version_segment.startswith("v") or not version_digits.isdigit() \
                or not version_digits.isascii():
            raise InvalidFormatException()

        if not timestamp_segment.isdigit() or not timestamp_segment.isascii() \
                or int(timestamp_segment) > MAX_TIMESTAMP:
            raise InvalidFormatException()

        try:
            random_bytes = _b32decode(random_part)
        except (binascii.Error, ValueError):
            raise InvalidFormatException()
        if len(random_bytes) != RANDOM_BYTES or _b32encode(random_bytes) != random_part:
            raise InvalidFormatException()

        try:
            provided = _b32decode(checksum_part)
        except (binascii.Error, ValueError):
            raise ChecksumMismatchException()

        expected = compute_checksum(
            prefix, environment, version_segment, timestamp_segment, random_bytes
        )
        # Compare the text form too so non-canonical base32 spellings are rejected
        if not secrets.compare_digest(provided, expected) \
                or not secrets.compare_digest(checksum_part, _b32encode(expected)):
            raise ChecksumMismatchException()

        return ParsedKey(
            prefix=prefix,
            environment=environment,
            version=int(version_digits),
            timestamp=int(timestamp_segment),
            random_part=random_part,
            checksum=checksum_part,
        )
