"""
blockhunt/ledger/client.py

Ledger access for the settlement orchestrator.

Architecture:
    LedgerClient (abstract)
    └── LocalLedgerClient (in-process LocalChain)

A client submits one contract operation, waits for its receipt, and reads
ledger state. It never retries on its own: a submission error, a revert and
a missing receipt are reported to the caller, who decides what to re-read.

Usage:
    from blockhunt.ledger.client import LocalLedgerClient

    client = LocalLedgerClient(chain, contract_address, signer)
    tx_hash = await client.submit("end_hackathon", 1)
    receipt = await client.wait_for_receipt(tx_hash)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

import trio

from ..config import LedgerConfig
from ..errors import (
    SettlementError,
    LedgerSubmissionFailure,
    LedgerExecutionReverted,
    ConfirmationTimeout,
)
from .chain import ChainError, LocalChain, Receipt
from .contract import HackathonFunding

logger = logging.getLogger("blockhunt.ledger.client")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class LedgerUnavailable(SettlementError):
    """Ledger state could not be read."""

    code = "ledger_unavailable"


@dataclass(frozen=True)
class LedgerRecordView:
    """Ledger-confirmed state of one hackathon."""
    hackathon_id: int
    exists: bool = False
    total_funding: int = 0
    funded: bool = False
    ended: bool = False
    distributed: bool = False
    winners: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerRecordView":
        return cls(
            hackathon_id=data['hackathon_id'],
            exists=data.get('exists', False),
            total_funding=data.get('total_funding', 0),
            funded=data.get('funded', False),
            ended=data.get('ended', False),
            distributed=data.get('distributed', False),
            winners=tuple(data.get('winners', ())),
        )


# ============================================================================
# ABSTRACT LEDGER CLIENT
# ============================================================================

class LedgerClient(ABC):
    """
    Abstract base class for ledger access.

    Subclass this to talk to a different ledger backend.
    """

    @abstractmethod
    async def submit(self, operation: str, *args: Any, value: int = 0) -> str:
        """
        Submit one contract operation.

        Args:
            operation: Contract method name
            *args: Method arguments
            value: Coin attached to the call (wei)

        Returns:
            Transaction hash (the operation identifier)

        Raises:
            LedgerSubmissionFailure: If the operation never reached the ledger
        """
        pass

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> Receipt:
        """
        Block until the operation is confirmed.

        Raises:
            ConfirmationTimeout: If no receipt was readable in time
            LedgerExecutionReverted: If the operation was mined but reverted
        """
        pass

    @abstractmethod
    async def is_pending(self, tx_hash: str) -> bool:
        """
        Whether a submitted operation may still be mined.

        False once it has a receipt or the node no longer holds it.
        """
        pass

    @abstractmethod
    async def get_hackathon(self, hackathon_id: int) -> LedgerRecordView:
        """
        Read ledger state for a hackathon.

        Raises:
            LedgerUnavailable: If the ledger cannot be read
        """
        pass

    @abstractmethod
    async def get_balance(self) -> int:
        """Contract balance in wei."""
        pass

    @abstractmethod
    async def active_hackathons(self) -> List[int]:
        """Ids that are funded and not yet distributed."""
        pass

    @abstractmethod
    async def is_paused(self) -> bool:
        pass


# ============================================================================
# LOCAL CHAIN CLIENT
# ============================================================================

class LocalLedgerClient(LedgerClient):
    """LedgerClient backed by an in-process LocalChain."""

    def __init__(
        self,
        chain: LocalChain,
        contract_address: str,
        signer: str,
        config: Optional[LedgerConfig] = None,
    ):
        """
        Initialize LocalLedgerClient.

        Args:
            chain: Chain hosting the contract
            contract_address: Deployed HackathonFunding address
            signer: Account used to sign every submission
            config: Timeouts and polling settings
        """
        self.chain = chain
        self.contract_address = contract_address
        self.signer = signer
        self.config = config or LedgerConfig()

    async def submit(self, operation: str, *args: Any, value: int = 0) -> str:
        if operation not in HackathonFunding.MUTATING:
            raise ValueError(f"Unknown ledger operation: {operation}")
        try:
            tx_hash = self.chain.send_transaction(
                self.signer,
                self.contract_address,
                operation,
                args,
                value=value,
            )
        except ChainError as e:
            logger.error(f"Submission of {operation} failed: {e}")
            raise LedgerSubmissionFailure(f"{operation} submission failed: {e}") from e

        logger.debug(f"Submitted {operation}{args}: {tx_hash}")
        # Let other tasks run between submission and the first receipt poll
        await trio.lowlevel.checkpoint()
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> Receipt:
        timeout = self.config.confirmation_timeout if timeout is None else timeout
        receipt: Optional[Receipt] = None
        try:
            with trio.fail_after(timeout):
                while receipt is None:
                    try:
                        receipt = self.chain.get_receipt(tx_hash)
                    except ChainError as e:
                        logger.debug(f"Receipt lookup for {tx_hash} failed: {e}")
                    if receipt is None:
                        await trio.sleep(self.config.poll_interval)
        except trio.TooSlowError:
            logger.warning(f"No receipt for {tx_hash} after {timeout}s")
            raise ConfirmationTimeout(
                f"No confirmation for {tx_hash} after {timeout}s",
                tx_hash=tx_hash,
            )

        if not receipt.succeeded:
            raise LedgerExecutionReverted(
                f"Transaction {tx_hash} reverted: {receipt.revert_reason}",
                tx_hash=tx_hash,
                reason=receipt.revert_reason,
            )
        return receipt

    async def is_pending(self, tx_hash: str) -> bool:
        return any(tx.tx_hash == tx_hash for tx in self.chain.pending_transactions())

    async def _read(self, view: str, *args: Any) -> Any:
        try:
            return self.chain.call(self.contract_address, view, *args)
        except ChainError as e:
            logger.error(f"Ledger read {view} failed: {e}")
            raise LedgerUnavailable(f"Ledger read {view} failed: {e}") from e

    async def get_hackathon(self, hackathon_id: int) -> LedgerRecordView:
        data = await self._read("get_hackathon", hackathon_id)
        return LedgerRecordView.from_dict(data)

    async def get_balance(self) -> int:
        return await self._read("get_balance")

    async def active_hackathons(self) -> List[int]:
        return await self._read("active_hackathons")

    async def is_paused(self) -> bool:
        return await self._read("is_paused")
