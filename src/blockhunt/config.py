"""
blockhunt/config.py

Configuration constants and data classes for blockhunt.
"""

import os
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Any

logger = logging.getLogger("blockhunt.config")


# ============================================================================
# LEDGER CONSTANTS
# ============================================================================

# 1 ether = 10**18 wei
WEI_PER_ETHER = 10 ** 18

# Addresses are 20-byte hex strings with a 0x prefix
ADDRESS_PATTERN = re.compile(r"0x[0-9a-fA-F]{40}")
ZERO_ADDRESS = "0x" + "0" * 40

# Prize split in basis points by number of winners.
# The last winner always receives the remainder, so only the leading
# shares are listed.
MAX_WINNERS = 3
PRIZE_SPLITS_BPS: Dict[int, Tuple[int, ...]] = {
    1: (),
    2: (7000,),
    3: (5000, 3000),
}
BPS_DENOMINATOR = 10000

# Confirmation settings
DEFAULT_CONFIRMATION_TIMEOUT = 30.0   # seconds
DEFAULT_POLL_INTERVAL = 0.05          # seconds between receipt polls

# Environment variable prefix
ENV_PREFIX = "BLOCKHUNT_"


# ============================================================================
# CONFIG DATA CLASSES
# ============================================================================

@dataclass
class LedgerConfig:
    """Configuration for the ledger connection."""

    # Automatically mine each submitted transaction
    automine: bool = True

    # Balance given to the signer account on a fresh dev chain (wei)
    signer_balance: int = 1000 * WEI_PER_ETHER

    # Receipt polling
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL


@dataclass
class OrchestratorConfig:
    """Configuration for the settlement orchestrator."""

    # Principal allowed to run contract-level commands (withdraw, pause)
    treasury_operator_id: Optional[int] = None

    # Run a reconciliation sweep over every projection record on start
    reconcile_on_start: bool = True


@dataclass
class StoreConfig:
    """Configuration for the projection store."""

    # None keeps the projection in memory only
    storage_dir: Optional[str] = None
    namespace: str = "hackathons"


@dataclass
class BlockhuntConfig:
    """
    Complete configuration for a blockhunt deployment.

    Usage:
        config = BlockhuntConfig.from_env()
        config.ledger.confirmation_timeout = 5.0
    """

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "BlockhuntConfig":
        """
        Build configuration from BLOCKHUNT_* environment variables.

        Recognized variables:
            BLOCKHUNT_CONFIRMATION_TIMEOUT  seconds to wait for a receipt
            BLOCKHUNT_POLL_INTERVAL         seconds between receipt polls
            BLOCKHUNT_AUTOMINE              "0" to disable automine
            BLOCKHUNT_TREASURY_OPERATOR     user id allowed to withdraw/pause
            BLOCKHUNT_STORAGE_DIR           directory for the projection store
            BLOCKHUNT_LOG_LEVEL             logging level name

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            BlockhuntConfig
        """
        env = os.environ if environ is None else environ
        config = cls()

        timeout = env.get(f"{ENV_PREFIX}CONFIRMATION_TIMEOUT")
        if timeout:
            config.ledger.confirmation_timeout = _parse_float(
                "CONFIRMATION_TIMEOUT", timeout, config.ledger.confirmation_timeout
            )

        poll = env.get(f"{ENV_PREFIX}POLL_INTERVAL")
        if poll:
            config.ledger.poll_interval = _parse_float(
                "POLL_INTERVAL", poll, config.ledger.poll_interval
            )

        automine = env.get(f"{ENV_PREFIX}AUTOMINE")
        if automine is not None:
            config.ledger.automine = automine.strip().lower() not in ("0", "false", "no", "off")

        operator = env.get(f"{ENV_PREFIX}TREASURY_OPERATOR")
        if operator:
            try:
                config.orchestrator.treasury_operator_id = int(operator)
            except ValueError:
                logger.warning(f"Invalid {ENV_PREFIX}TREASURY_OPERATOR: {operator!r}")

        storage_dir = env.get(f"{ENV_PREFIX}STORAGE_DIR")
        if storage_dir:
            config.store.storage_dir = storage_dir

        log_level = env.get(f"{ENV_PREFIX}LOG_LEVEL")
        if log_level:
            config.log_level = log_level.upper()

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        return {
            'automine': self.ledger.automine,
            'confirmation_timeout': self.ledger.confirmation_timeout,
            'poll_interval': self.ledger.poll_interval,
            'treasury_operator_id': self.orchestrator.treasury_operator_id,
            'reconcile_on_start': self.orchestrator.reconcile_on_start,
            'storage_dir': self.store.storage_dir,
            'log_level': self.log_level,
        }


def _parse_float(name: str, raw: str, default: float) -> float:
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid {ENV_PREFIX}{name}: {raw!r}, using {default}")
        return default
    if value <= 0:
        logger.warning(f"{ENV_PREFIX}{name} must be positive, using {default}")
        return default
    return value


def prize_split_labels() -> List[str]:
    """Human readable split per winner count, e.g. ['100', '70/30', '50/30/20']."""
    labels = []
    for count in range(1, MAX_WINNERS + 1):
        shares = list(PRIZE_SPLITS_BPS[count])
        shares.append(BPS_DENOMINATOR - sum(shares))
        labels.append("/".join(str(s * 100 // BPS_DENOMINATOR) for s in shares))
    return labels
