"""
fairpool/config.py

Configuration constants and data classes for fairpool.

Amounts are integers in the smallest currency unit (nanoton, 10^-9 TON).
Durations are in seconds.
"""

import os
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


logger = logging.getLogger("fairpool.config")


# ============================================================================
# CURRENCY
# ============================================================================

NANOTON_PER_TON = 1_000_000_000
TON_DECIMALS = 9

# Basis points denominator (10000 bps = 100%)
BASIS_POINTS = 10_000

# ============================================================================
# GAME POLICY
# ============================================================================

PLATFORM_FEE_BPS = 500              # 5% platform fee

MIN_STAKE = 100_000_000             # 0.1 TON
MAX_STAKE = 10_000 * NANOTON_PER_TON

MIN_PARTICIPANTS = 2                # Below this a round is cancelled
MAX_PARTICIPANTS = 1000

MIN_ROUND_DURATION = 10 * 60        # 10 minutes
MAX_ROUND_DURATION = 7 * 24 * 60 * 60

# ============================================================================
# FAIRNESS
# ============================================================================

# Claimed and recomputed payouts may differ by this many units
PAYOUT_TOLERANCE = 1

# Seed material changes once per bucket, so retries inside it reproduce the seed
SEED_TIME_BUCKET_SECONDS = 10

# ============================================================================
# SCHEDULER
# ============================================================================

CHECK_INTERVAL = 30.0               # Seconds between trigger checks
DISTRIBUTION_TIMEOUT = 60.0         # Max seconds to fetch entropy and persist a round
EXPIRY_WARNING_SECONDS = 5 * 60     # Warn participants 5 minutes before deadline
EVENT_BUFFER_SIZE = 1000            # Pending events before new ones are dropped

# Environment variable prefix for overrides
ENV_PREFIX = "FAIRPOOL_"


@dataclass
class GameConfig:
    """Policy settings for a RoundManager."""
    platform_fee_bps: int = PLATFORM_FEE_BPS
    min_stake: int = MIN_STAKE
    max_stake: int = MAX_STAKE
    min_participants: int = MIN_PARTICIPANTS
    max_participants: int = MAX_PARTICIPANTS
    min_round_duration: int = MIN_ROUND_DURATION
    max_round_duration: int = MAX_ROUND_DURATION
    seed_time_bucket: int = SEED_TIME_BUCKET_SECONDS
    check_interval: float = CHECK_INTERVAL
    distribution_timeout: float = DISTRIBUTION_TIMEOUT
    expiry_warning_seconds: int = EXPIRY_WARNING_SECONDS
    event_buffer_size: int = EVENT_BUFFER_SIZE

    def validate(self) -> None:
        """
        Check the settings are internally consistent.

        Raises:
            ValueError: If any setting is out of range
        """
        if not 0 <= self.platform_fee_bps <= BASIS_POINTS:
            raise ValueError(
                f"platform_fee_bps must be in [0, {BASIS_POINTS}], got {self.platform_fee_bps}"
            )
        if self.min_stake < 0 or self.max_stake < self.min_stake:
            raise ValueError("Stake bounds must satisfy 0 <= min_stake <= max_stake")
        if self.min_participants < 1:
            raise ValueError("min_participants must be at least 1")
        if self.max_participants < self.min_participants:
            raise ValueError("max_participants must be >= min_participants")
        if self.min_round_duration < 0 or self.max_round_duration < self.min_round_duration:
            raise ValueError("Round duration bounds are inconsistent")
        if self.seed_time_bucket <= 0:
            raise ValueError("seed_time_bucket must be positive")
        if self.check_interval <= 0:
            raise ValueError("check_interval must be positive")
        if self.distribution_timeout <= 0:
            raise ValueError("distribution_timeout must be positive")
        if self.event_buffer_size < 0:
            raise ValueError("event_buffer_size must be non-negative")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "GameConfig":
        """
        Build a config from FAIRPOOL_* environment variables.

        Unset variables keep their defaults, e.g. FAIRPOOL_PLATFORM_FEE_BPS=250.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            Validated GameConfig
        """
        environ = os.environ if environ is None else environ
        config = cls()
        for name, default in config.to_dict().items():
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None:
                continue
            value_type = type(default)
            try:
                setattr(config, name, value_type(raw.strip()))
            except ValueError:
                raise ValueError(
                    f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}"
                )
            logger.debug(f"Config override {name}={raw.strip()}")
        config.validate()
        return config
