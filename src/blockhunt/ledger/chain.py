"""
blockhunt/ledger/chain.py

In-process development chain hosting ledger contracts.

Provides:
- Native coin balances and account creation
- Contract deployment
- Transaction submission into a mempool, with optional automine
- A single serialized executor: transactions run one at a time, each against
  a snapshot that is restored if the transaction reverts
- Receipts with status, revert reason and emitted events
- Fault injection (failed submissions, dropped transactions, unreadable
  receipts, unreadable state) for exercising callers against an unreliable
  execution channel

Usage:
    chain = LocalChain()
    organizer = chain.create_account(balance=10 * WEI_PER_ETHER)
    address = chain.deploy(HackathonFunding, organizer)

    tx_hash = chain.send_transaction(organizer, address, "register", (1,))
    receipt = chain.get_receipt(tx_hash)
"""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .contract import CallContext, ContractRevert, EventLog

logger = logging.getLogger("blockhunt.ledger.chain")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class ChainError(Exception):
    """Raised when the chain cannot accept a transaction or serve a read."""
    pass


class InsufficientFunds(ChainError):
    """Sender balance does not cover the attached value."""
    pass


@dataclass
class Transaction:
    """Signed transaction as accepted by the chain."""
    sender: str
    to: str
    method: Optional[str]
    args: Tuple[Any, ...]
    value: int
    nonce: int
    submitted_at: float = field(default_factory=time.time)
    tx_hash: str = ""

    def payload(self) -> dict:
        return {
            'from': self.sender,
            'to': self.to,
            'method': self.method,
            'args': list(self.args),
            'value': self.value,
            'nonce': self.nonce,
        }

    def compute_hash(self) -> str:
        encoded = json.dumps(self.payload(), sort_keys=True, default=str).encode()
        return "0x" + hashlib.sha256(encoded).hexdigest()


@dataclass
class Receipt:
    """Outcome of a mined transaction."""
    tx_hash: str
    block_number: int
    status: int  # 1 = success, 0 = reverted
    revert_reason: str = ""
    events: List[EventLog] = field(default_factory=list)
    return_value: Any = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    def to_dict(self) -> dict:
        return {
            'tx_hash': self.tx_hash,
            'block_number': self.block_number,
            'status': self.status,
            'revert_reason': self.revert_reason,
            'events': [e.to_dict() for e in self.events],
        }


@dataclass
class Block:
    """A mined block."""
    number: int
    timestamp: float
    tx_hashes: List[str] = field(default_factory=list)


@dataclass
class FaultPlan:
    """
    Injected failures for the execution channel.

    fail_submissions: next N submissions raise ChainError
    drop_transactions: next N accepted transactions are never mined
    hide_receipts: receipt lookups raise ChainError
    fail_reads: contract view calls raise ChainError
    """
    fail_submissions: int = 0
    drop_transactions: int = 0
    hide_receipts: bool = False
    fail_reads: bool = False
    submission_error: str = "connection refused"

    def clear(self) -> None:
        self.fail_submissions = 0
        self.drop_transactions = 0
        self.hide_receipts = False
        self.fail_reads = False


# Hook run when an account receives coin: hook(chain, sender, amount)
ReceiveHook = Callable[["LocalChain", str, int], None]


# ============================================================================
# LOCAL CHAIN
# ============================================================================

class LocalChain:
    """
    Minimal single-node chain for running ledger contracts in process.

    All mutation goes through one re-entrant lock, so transactions execute
    strictly one after another even when submitted from several threads.
    """

    def __init__(self, automine: bool = True, chain_id: int = 31337):
        """
        Initialize LocalChain.

        Args:
            automine: Mine every transaction as soon as it is submitted
            chain_id: Identifier mixed into account derivation
        """
        self.automine = automine
        self.chain_id = chain_id
        self.faults = FaultPlan()

        self._lock = threading.RLock()
        self._balances: Dict[str, int] = {}
        self._contracts: Dict[str, Any] = {}
        self._receive_hooks: Dict[str, ReceiveHook] = {}
        self._nonces: Dict[str, int] = {}
        self._account_counter = 0

        self._mempool: List[Transaction] = []
        self._transactions: Dict[str, Transaction] = {}
        self._receipts: Dict[str, Receipt] = {}
        self._blocks: List[Block] = []

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def _derive_address(self, label: str) -> str:
        self._account_counter += 1
        seed = f"{self.chain_id}:{label}:{self._account_counter}".encode()
        return "0x" + hashlib.sha256(seed).hexdigest()[:40]

    def create_account(self, balance: int = 0) -> str:
        """Create an externally owned account with an initial balance."""
        with self._lock:
            address = self._derive_address("account")
            self._balances[address] = balance
            return address

    def fund_account(self, address: str, amount: int) -> None:
        """Credit coin to an account out of thin air (dev faucet)."""
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        with self._lock:
            address = address.lower()
            self._balances[address] = self._balances.get(address, 0) + amount

    def balance_of(self, address: str) -> int:
        with self._lock:
            return self._balances.get(address.lower(), 0)

    def set_receive_hook(self, address: str, hook: Optional[ReceiveHook]) -> None:
        """Install code that runs whenever address receives coin."""
        with self._lock:
            if hook is None:
                self._receive_hooks.pop(address.lower(), None)
            else:
                self._receive_hooks[address.lower()] = hook

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    def deploy(self, factory: Callable[..., Any], deployer: str) -> str:
        """
        Deploy a contract.

        Args:
            factory: Contract class, called as factory(address, deployer, chain)
            deployer: Account that becomes the contract owner

        Returns:
            Contract address
        """
        with self._lock:
            address = self._derive_address("contract")
            self._contracts[address] = factory(address, deployer, self)
            self._balances.setdefault(address, 0)
            logger.info(f"Deployed {getattr(factory, '__name__', 'contract')} at {address}")
            return address

    def contract_at(self, address: str) -> Any:
        contract = self._contracts.get(address.lower())
        if contract is None:
            raise ChainError(f"No contract at {address}")
        return contract

    def call(self, address: str, view: str, *args: Any) -> Any:
        """Run a read-only contract method."""
        if self.faults.fail_reads:
            raise ChainError("state read failed")
        contract = self.contract_at(address)
        if view not in getattr(contract, "VIEWS", ()):
            raise ChainError(f"Unknown view {view}")
        with self._lock:
            return getattr(contract, view)(*args)

    # ------------------------------------------------------------------
    # Value transfer (used by contracts during execution)
    # ------------------------------------------------------------------

    def transfer(self, sender: str, to: str, amount: int) -> None:
        """
        Move coin between accounts and run the recipient's receive code.

        Only valid while a transaction is executing; the enclosing
        transaction is rolled back if anything raised here propagates.
        """
        with self._lock:
            self._move(sender, to, amount)
            to = to.lower()
            if to in self._contracts:
                self._contracts[to].receive(CallContext(sender=sender, value=amount))
            hook = self._receive_hooks.get(to)
            if hook is not None:
                hook(self, sender, amount)

    def invoke(self, sender: str, to: str, method: str, *args: Any, value: int = 0) -> Any:
        """
        Call a contract method from inside a running transaction.

        Receive hooks use this to call back into a contract while it is
        paying them out.
        """
        with self._lock:
            contract = self.contract_at(to)
            if method not in getattr(contract, "MUTATING", ()):
                raise ChainError(f"Unknown method {method}")
            if value:
                self._move(sender, to, value)
            return getattr(contract, method)(CallContext(sender=sender, value=value), *args)

    def _move(self, sender: str, to: str, amount: int) -> None:
        if amount < 0:
            raise ContractRevert("Negative transfer")
        sender = sender.lower()
        to = to.lower()
        if self._balances.get(sender, 0) < amount:
            raise ContractRevert("Insufficient balance for transfer")
        self._balances[sender] = self._balances.get(sender, 0) - amount
        self._balances[to] = self._balances.get(to, 0) + amount

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def send_transaction(
        self,
        sender: str,
        to: str,
        method: Optional[str] = None,
        args: Tuple[Any, ...] = (),
        value: int = 0,
    ) -> str:
        """
        Submit a transaction.

        Args:
            sender: Signing account
            to: Contract or account address
            method: Contract method name, None for a plain transfer
            args: Positional method arguments
            value: Coin attached to the call (wei)

        Returns:
            Transaction hash

        Raises:
            ChainError: If the node rejects the submission
            InsufficientFunds: If sender cannot cover value
        """
        with self._lock:
            if self.faults.fail_submissions > 0:
                self.faults.fail_submissions -= 1
                raise ChainError(self.faults.submission_error)

            sender = sender.lower()
            to = to.lower()
            if value < 0:
                raise ChainError("Value must be non-negative")
            if self._balances.get(sender, 0) < value:
                raise InsufficientFunds(
                    f"Insufficient funds: have {self._balances.get(sender, 0)}, need {value}"
                )
            if method is not None:
                contract = self.contract_at(to)
                if method not in getattr(contract, "MUTATING", ()):
                    raise ChainError(f"Unknown method {method}")

            nonce = self._nonces.get(sender, 0)
            self._nonces[sender] = nonce + 1
            tx = Transaction(
                sender=sender,
                to=to,
                method=method,
                args=tuple(args),
                value=value,
                nonce=nonce,
            )
            tx.tx_hash = tx.compute_hash()
            self._transactions[tx.tx_hash] = tx

            if self.faults.drop_transactions > 0:
                self.faults.drop_transactions -= 1
                logger.debug(f"Dropping transaction {tx.tx_hash}")
                return tx.tx_hash

            self._mempool.append(tx)
            logger.debug(f"Accepted {method or 'transfer'} from {sender}: {tx.tx_hash}")

        if self.automine:
            self.mine()
        return tx.tx_hash

    def mine(self) -> Optional[Block]:
        """
        Execute every pending transaction in submission order.

        Returns:
            The new block, or None if the mempool was empty
        """
        with self._lock:
            if not self._mempool:
                return None

            block = Block(number=len(self._blocks) + 1, timestamp=time.time())
            pending, self._mempool = self._mempool, []
            for tx in pending:
                self._receipts[tx.tx_hash] = self._execute(tx, block.number)
                block.tx_hashes.append(tx.tx_hash)
            self._blocks.append(block)
            return block

    def _snapshot(self) -> Tuple[Dict[str, int], Dict[str, Any]]:
        states = {address: c.snapshot() for address, c in self._contracts.items()}
        return dict(self._balances), states

    def _restore(self, snapshot: Tuple[Dict[str, int], Dict[str, Any]]) -> None:
        balances, states = snapshot
        self._balances = balances
        for address, state in states.items():
            self._contracts[address].restore(state)

    def _drain_events(self) -> List[EventLog]:
        events: List[EventLog] = []
        for contract in self._contracts.values():
            events.extend(contract.drain_events())
        return events

    def _execute(self, tx: Transaction, block_number: int) -> Receipt:
        snapshot = self._snapshot()
        try:
            result = None
            if tx.method is None:
                self.transfer(tx.sender, tx.to, tx.value)
            else:
                result = self.invoke(tx.sender, tx.to, tx.method, *tx.args, value=tx.value)
            return Receipt(
                tx_hash=tx.tx_hash,
                block_number=block_number,
                status=1,
                events=self._drain_events(),
                return_value=result,
            )
        except ContractRevert as e:
            self._restore(snapshot)
            self._drain_events()
            logger.debug(f"Transaction {tx.tx_hash} reverted: {e.reason}")
            return Receipt(
                tx_hash=tx.tx_hash,
                block_number=block_number,
                status=0,
                revert_reason=e.reason,
            )
        except Exception as e:
            self._restore(snapshot)
            self._drain_events()
            logger.error(f"Transaction {tx.tx_hash} failed during execution: {e}")
            return Receipt(
                tx_hash=tx.tx_hash,
                block_number=block_number,
                status=0,
                revert_reason=f"{type(e).__name__}: {e}",
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """Receipt for a mined transaction, None while pending or dropped."""
        if self.faults.hide_receipts:
            raise ChainError("receipt unavailable")
        with self._lock:
            return self._receipts.get(tx_hash)

    def get_transaction(self, tx_hash: str) -> Optional[Transaction]:
        with self._lock:
            return self._transactions.get(tx_hash)

    def pending_transactions(self) -> List[Transaction]:
        with self._lock:
            return list(self._mempool)

    @property
    def block_number(self) -> int:
        return len(self._blocks)
