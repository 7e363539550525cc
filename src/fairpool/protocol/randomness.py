"""
fairpool/protocol/randomness.py

Deterministic randomness for round distribution.

Every value here is a pure function of public inputs, so any third party can
regenerate a round's random values from its seed, block hash and ordered
participant list:

    combined = seed + block_hash
    base     = simple_hash(combined)
    value_i  = (base + simple_hash(combined + address_i + str(i))) mod 2^32
    value_i  = 1 if value_i == 0

simple_hash is a 32-bit rolling hash (h * 31 + byte) over UTF-8 bytes. It is
NOT cryptographically strong and seeds derived by derive_round_seed() are
predictable from public round data. Both are known limitations: a hardened
scheme would commit to a secret seed before joins open and use a strong hash.

Usage:
    from fairpool.protocol.randomness import generate_random_values

    values = generate_random_values(seed, block_hash, ["EQA...", "EQB..."])
"""

import re
import hashlib
import secrets
from typing import Iterable, List, Sequence


UINT32_MASK = 0xFFFFFFFF

# 0x-prefixed 256-bit hex value. Only 32 bits are consumed by simple_hash,
# the wider format leaves room for a stronger hash later.
HEX256_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")


def simple_hash(data: str) -> int:
    """
    32-bit rolling hash over the UTF-8 encoding of data.

    Args:
        data: Input string

    Returns:
        Unsigned 32-bit integer
    """
    value = 0
    for byte in data.encode("utf-8"):
        value = ((value << 5) - value + byte) & UINT32_MASK
    return value


def generate_random_values(
    seed: str,
    block_hash: str,
    addresses: Sequence[str],
) -> List[int]:
    """
    Derive one non-zero uint32 per participant.

    Args:
        seed: Round seed
        block_hash: External entropy (block hash)
        addresses: Ordered participant addresses

    Returns:
        Values in the same order as addresses
    """
    combined = seed + block_hash
    base = simple_hash(combined)

    values = []
    for index, address in enumerate(addresses):
        participant_hash = simple_hash(f"{combined}{address}{index}")
        value = (base + participant_hash) & UINT32_MASK
        values.append(value if value != 0 else 1)
    return values


def generate_commit_hash(seed: str, salt: str) -> str:
    """Commitment to a seed: simple_hash(seed + salt) as 0x + 64 hex digits."""
    return "0x" + format(simple_hash(seed + salt), "064x")


def is_valid_seed(seed: str) -> bool:
    """True if seed is 0x followed by exactly 64 hex digits."""
    return isinstance(seed, str) and HEX256_PATTERN.match(seed) is not None


def is_valid_block_hash(block_hash: str) -> bool:
    """True if block_hash is 0x followed by exactly 64 hex digits."""
    return isinstance(block_hash, str) and HEX256_PATTERN.match(block_hash) is not None


def generate_random_seed() -> str:
    """Random 256-bit seed for demos and tests."""
    return "0x" + secrets.token_hex(32)


def seed_time_bucket(now: float, bucket_seconds: int) -> int:
    """Index of the time bucket containing now."""
    return int(now // bucket_seconds)


def derive_round_seed(
    round_id: int,
    created_at: int,
    participants: Iterable[str],
    now: float,
    bucket_seconds: int,
) -> str:
    """
    Deterministic seed for a round closing at time now.

    The round id is always part of the material so two rounds with the same
    participants closing in the same bucket never share a seed. Retrying a
    distribution inside the same bucket reproduces the same seed.

    Returns:
        0x-prefixed 64 hex digit seed
    """
    material = "-".join([
        str(round_id),
        str(created_at),
        ",".join(sorted(participants)),
        str(seed_time_bucket(now, bucket_seconds)),
    ])
    return "0x" + hashlib.sha256(material.encode("utf-8")).hexdigest()
