"""
fairpool/tests/test_randomness.py

Tests for the hash primitive, random value generation and seed helpers.
"""

import pytest
from unittest.mock import patch

from fairpool.protocol.randomness import (
    simple_hash,
    generate_random_values,
    generate_commit_hash,
    generate_random_seed,
    derive_round_seed,
    seed_time_bucket,
    is_valid_seed,
    is_valid_block_hash,
    UINT32_MASK,
)


SEED_1 = "0x" + "1" * 64
SEED_2 = "0x" + "2" * 64
BLOCK_HASH = "0x" + "a" * 64
ADDRESSES = ["EQAlice", "EQBob", "EQCarol"]


class TestSimpleHash:
    """Test the 32-bit rolling hash."""

    def test_empty_string(self):
        """Empty input hashes to zero."""
        assert simple_hash("") == 0

    def test_known_values(self):
        """Hash follows h * 31 + byte."""
        assert simple_hash("a") == 97
        assert simple_hash("ab") == 97 * 31 + 98
        assert simple_hash("ab") == 3105

    def test_utf8_bytes(self):
        """Non-ASCII input is hashed over its UTF-8 bytes."""
        # "é" is 0xC3 0xA9
        assert simple_hash("é") == 195 * 31 + 169

    def test_wraps_to_32_bits(self):
        """Long input stays an unsigned 32-bit integer."""
        value = simple_hash("x" * 10_000)
        assert 0 <= value <= UINT32_MASK

    def test_deterministic(self):
        """Same input, same hash."""
        assert simple_hash(SEED_1 + BLOCK_HASH) == simple_hash(SEED_1 + BLOCK_HASH)


class TestGenerateRandomValues:
    """Test per-participant random values."""

    def test_known_vector(self):
        """Values combine the base hash with the participant hash."""
        # base = hash("sb") = 3663, hash("sbx0") = 3523911
        assert generate_random_values("s", "b", ["x"]) == [3527574]
        assert generate_random_values("s", "b", ["x", "y"]) == [3527574, 3527606]

    def test_deterministic(self):
        """Same inputs produce identical lists."""
        first = generate_random_values(SEED_1, BLOCK_HASH, ADDRESSES)
        second = generate_random_values(SEED_1, BLOCK_HASH, ADDRESSES)
        assert first == second

    def test_one_value_per_address(self):
        """Output length matches address count."""
        assert len(generate_random_values(SEED_1, BLOCK_HASH, ADDRESSES)) == 3
        assert generate_random_values(SEED_1, BLOCK_HASH, []) == []

    def test_seed_sensitivity(self):
        """Changing the seed changes the values."""
        first = generate_random_values(SEED_1, BLOCK_HASH, ADDRESSES)
        second = generate_random_values(SEED_2, BLOCK_HASH, ADDRESSES)
        assert first != second

    def test_block_hash_sensitivity(self):
        """Changing the block hash changes the values."""
        first = generate_random_values(SEED_1, BLOCK_HASH, ADDRESSES)
        second = generate_random_values(SEED_1, "0x" + "b" * 64, ADDRESSES)
        assert first != second

    def test_order_matters(self):
        """Index is part of the participant hash."""
        forward = generate_random_values(SEED_1, BLOCK_HASH, ["EQAlice", "EQBob"])
        reverse = generate_random_values(SEED_1, BLOCK_HASH, ["EQBob", "EQAlice"])
        assert forward != list(reversed(reverse))

    def test_values_in_range(self):
        """Every value is a non-zero uint32."""
        addresses = [f"EQParticipant{i}" for i in range(200)]
        for value in generate_random_values(SEED_1, BLOCK_HASH, addresses):
            assert 1 <= value <= UINT32_MASK

    def test_zero_replaced_by_one(self):
        """A zero sum is replaced by 1."""
        with patch("fairpool.protocol.randomness.simple_hash", return_value=0):
            assert generate_random_values(SEED_1, BLOCK_HASH, ADDRESSES) == [1, 1, 1]

    def test_wrapping_sum_replaced_by_one(self):
        """A sum that wraps to exactly zero is also replaced by 1."""
        with patch("fairpool.protocol.randomness.simple_hash", return_value=2 ** 31):
            assert generate_random_values(SEED_1, BLOCK_HASH, ["EQAlice"]) == [1]


class TestCommitHash:
    """Test seed commitments."""

    def test_format(self):
        """Commit hash is 0x + 64 hex digits."""
        commit = generate_commit_hash(SEED_1, "7")
        assert is_valid_seed(commit)

    def test_known_value(self):
        """Commit is the zero-padded simple hash."""
        assert generate_commit_hash("a", "") == "0x" + "0" * 62 + "61"

    def test_salt_changes_commit(self):
        """Different salts give different commits."""
        assert generate_commit_hash(SEED_1, "1") != generate_commit_hash(SEED_1, "2")


class TestFormatValidators:
    """Test seed and block hash format checks."""

    def test_valid_formats(self):
        assert is_valid_seed(SEED_1)
        assert is_valid_seed("0x" + "AbCdEf0123456789" * 4)
        assert is_valid_block_hash(BLOCK_HASH)

    @pytest.mark.parametrize("value", [
        "invalid_seed",
        "0x" + "1" * 63,
        "0x" + "1" * 65,
        "1" * 66,
        "0x" + "g" * 64,
        "",
        None,
        12345,
    ])
    def test_invalid_formats(self, value):
        assert not is_valid_seed(value)
        assert not is_valid_block_hash(value)


class TestSeedHelpers:
    """Test seed generation and derivation."""

    def test_random_seed_format(self):
        """Random seeds are well formed and distinct."""
        seeds = {generate_random_seed() for _ in range(10)}
        assert len(seeds) == 10
        assert all(is_valid_seed(s) for s in seeds)

    def test_time_bucket(self):
        assert seed_time_bucket(100, 10) == 10
        assert seed_time_bucket(109.9, 10) == 10
        assert seed_time_bucket(110, 10) == 11

    def test_derived_seed_format(self):
        seed = derive_round_seed(1, 1000, ADDRESSES, 2000, 10)
        assert is_valid_seed(seed)

    def test_same_bucket_same_seed(self):
        """Retrying inside the bucket reproduces the seed."""
        first = derive_round_seed(1, 1000, ADDRESSES, 2000, 10)
        retry = derive_round_seed(1, 1000, ADDRESSES, 2005, 10)
        assert first == retry

    def test_next_bucket_new_seed(self):
        first = derive_round_seed(1, 1000, ADDRESSES, 2000, 10)
        later = derive_round_seed(1, 1000, ADDRESSES, 2010, 10)
        assert first != later

    def test_participant_order_ignored(self):
        """Seed material uses the sorted participant set."""
        first = derive_round_seed(1, 1000, ADDRESSES, 2000, 10)
        shuffled = derive_round_seed(1, 1000, list(reversed(ADDRESSES)), 2000, 10)
        assert first == shuffled

    def test_round_id_changes_seed(self):
        """Rounds with identical data never share a seed."""
        first = derive_round_seed(1, 1000, ADDRESSES, 2000, 10)
        second = derive_round_seed(2, 1000, ADDRESSES, 2000, 10)
        assert first != second
