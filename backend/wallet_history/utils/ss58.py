"""SS58 address encoding."""
import hashlib
from typing import Optional, Tuple
import base58

SS58_PREFIX = b"SS58PRE"


def _checksum(payload: bytes) -> bytes:
    return hashlib.blake2b(SS58_PREFIX + payload, digest_size=64).digest()


def _encode_format(ss58_format: int) -> bytes:
    if ss58_format < 0 or ss58_format > 16383 or ss58_format in (46, 47):
        raise ValueError(f"Invalid SS58 format: {ss58_format}")
    if ss58_format < 64:
        return bytes([ss58_format])
    return bytes([
        ((ss58_format & 0b1111_1100) >> 2) | 0b0100_0000,
        (ss58_format >> 8) | ((ss58_format & 0b0000_0011) << 6),
    ])


def encode_address(public_key: bytes, ss58_format: int = 42) -> str:
    """
    Encode a public key as an SS58 address.

    Args:
        public_key: Raw account id (32 bytes for sr25519/ed25519)
        ss58_format: Network prefix

    Returns:
        Base58 SS58 address
    """
    if len(public_key) not in (1, 2, 4, 8, 32, 33):
        raise ValueError(f"Invalid public key length: {len(public_key)}")

    payload = _encode_format(ss58_format) + public_key
    checksum_length = 2 if len(public_key) in (32, 33) else 1
    return base58.b58encode(payload + _checksum(payload)[:checksum_length]).decode()


def encode_hex_address(account_id: str, ss58_format: int = 42) -> str:
    """Encode a 0x-prefixed hex account id."""
    hex_id = account_id[2:] if account_id.startswith("0x") else account_id
    return encode_address(bytes.fromhex(hex_id), ss58_format)


def decode_address(address: str) -> Tuple[int, bytes]:
    """
    Decode an SS58 address.

    Returns:
        Tuple of (ss58_format, public_key)

    Raises:
        ValueError: If the address is malformed or the checksum fails
    """
    raw = base58.b58decode(address)
    if len(raw) < 3:
        raise ValueError("Address too short")

    if raw[0] & 0b0100_0000:
        prefix_length = 2
        ss58_format = ((raw[0] & 0b0011_1111) << 2) | (raw[1] >> 6) | ((raw[1] & 0b0011_1111) << 8)
    else:
        prefix_length = 1
        ss58_format = raw[0]

    checksum_length = 2 if len(raw) - prefix_length in (34, 35) else 1
    payload, checksum = raw[:-checksum_length], raw[-checksum_length:]
    if _checksum(payload)[:checksum_length] != checksum:
        raise ValueError("Invalid SS58 checksum")

    return ss58_format, payload[prefix_length:]


def validate_address(address: str, ss58_format: Optional[int] = None) -> bool:
    """
    Validate an SS58 address, optionally against an expected network prefix.
    """
    if not address or len(address) < 3 or len(address) > 60:
        return False

    try:
        decoded_format, _ = decode_address(address)
    except ValueError:
        return False

    return ss58_format is None or decoded_format == ss58_format
