"""
blockhunt/devnet.py

Local development network: deploys HackathonFunding on an in-process chain
and drives one hackathon through its whole settlement lifecycle.

Run with: python -m blockhunt.devnet --winners 3 --amount 1.5
"""

import json
import logging
import sys
from typing import Any, Dict, List, Optional

import click
import trio

from .config import BlockhuntConfig, prize_split_labels
from .errors import SettlementError
from .ledger import HackathonFunding, LocalChain, LocalLedgerClient, from_wei, to_wei
from .metrics import SettlementMetrics
from .projection import ProjectionStore
from .settlement import Principal, Role, SettlementOrchestrator

logger = logging.getLogger("blockhunt.devnet")

# User id of the demo organizer; also the treasury operator
DEVNET_ORGANIZER_ID = 1


async def _miner(chain: LocalChain, interval: float) -> None:
    """Mine pending transactions periodically when automine is off."""
    while True:
        await trio.sleep(interval)
        block = chain.mine()
        if block is not None:
            logger.debug(f"Mined block {block.number} with {len(block.tx_hashes)} tx")


async def run_lifecycle(
    config: BlockhuntConfig,
    winner_count: int,
    amount_wei: int,
    title: str = "Devnet Hackathon",
) -> Dict[str, Any]:
    """
    Deploy, create a hackathon and settle it end to end.

    Args:
        config: Deployment configuration
        winner_count: Number of winner accounts to create (1-3)
        amount_wei: Prize pool
        title: Hackathon title

    Returns:
        Summary with operation ids, payouts and metrics
    """
    chain = LocalChain(automine=config.ledger.automine)
    signer = chain.create_account(balance=config.ledger.signer_balance)
    contract = chain.deploy(HackathonFunding, signer)
    ledger = LocalLedgerClient(chain, contract, signer, config.ledger)
    logger.info(f"Contract deployed at {contract}, signer {signer}")

    if config.orchestrator.treasury_operator_id is None:
        config.orchestrator.treasury_operator_id = DEVNET_ORGANIZER_ID

    store = ProjectionStore.from_config(config.store)
    metrics = SettlementMetrics()
    orchestrator = SettlementOrchestrator(store, ledger, config.orchestrator, metrics)
    organizer = Principal(user_id=DEVNET_ORGANIZER_ID, role=Role.ORGANIZER)
    winners: List[str] = [chain.create_account() for _ in range(winner_count)]
    operations: Dict[str, str] = {}

    async def settle() -> int:
        # A fresh chain knows nothing of earlier projection records
        sweep = await orchestrator.start()
        if sweep is not None and sweep.repaired:
            logger.info(f"Start-up sweep repaired hackathons {sweep.repaired}")

        existing = await store.list()
        hackathon_id = max((r.hackathon_id for r in existing), default=0) + 1
        await store.create(
            hackathon_id,
            title,
            "Local settlement run",
            organizer_id=organizer.user_id,
        )

        steps = [
            ("register", lambda: orchestrator.register_hackathon(hackathon_id, organizer)),
            ("end_hackathon", lambda: orchestrator.end_hackathon(hackathon_id, organizer)),
            ("fund", lambda: orchestrator.fund_hackathon(hackathon_id, organizer, amount_wei)),
            ("set_winners", lambda: orchestrator.set_winners(hackathon_id, organizer, winners)),
            ("distribute_prizes", lambda: orchestrator.distribute_prizes(hackathon_id, organizer)),
        ]
        for name, step in steps:
            result = await step()
            operations[name] = result.operation_id
            logger.info(f"{name}: {result.operation_id} (block {result.block_number})")
        return hackathon_id

    failure: Optional[SettlementError] = None
    async with trio.open_nursery() as nursery:
        if not config.ledger.automine:
            nursery.start_soon(_miner, chain, config.ledger.poll_interval)
        try:
            hackathon_id = await settle()
        except SettlementError as e:
            failure = e
        nursery.cancel_scope.cancel()

    # Raised outside the nursery so callers see the error itself, not a group
    if failure is not None:
        raise failure

    record = await store.require(hackathon_id)
    return {
        'contract': contract,
        'hackathon': record.to_dict(),
        'operations': operations,
        'split': prize_split_labels()[winner_count - 1],
        'payouts': {w: str(from_wei(chain.balance_of(w))) for w in winners},
        'contract_balance': str(from_wei(chain.balance_of(contract))),
        'metrics': metrics.get_stats(),
    }


@click.command()
@click.option('--winners', 'winner_count', type=click.IntRange(1, 3), default=3,
              show_default=True, help='Number of winners to pay out')
@click.option('--amount', default='1', show_default=True,
              help='Prize pool in ether, e.g. 1.5')
@click.option('--title', default='Devnet Hackathon', show_default=True)
@click.option('--timeout', type=float, default=None,
              help='Seconds to wait for each confirmation')
@click.option('--no-automine', is_flag=True, default=False,
              help='Mine in a background task instead of on submission')
@click.option('--storage-dir', type=click.Path(file_okay=False), default=None,
              help='Persist the projection to this directory')
@click.option('--log-level', default=None,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
def main(winner_count: int, amount: str, title: str, timeout: Optional[float],
         no_automine: bool, storage_dir: Optional[str], log_level: Optional[str]) -> None:
    """Run one hackathon through register, end, fund, set winners and distribute."""
    config = BlockhuntConfig.from_env()
    if timeout is not None:
        config.ledger.confirmation_timeout = timeout
    if no_automine:
        config.ledger.automine = False
    if storage_dir:
        config.store.storage_dir = storage_dir
    if log_level:
        config.log_level = log_level.upper()

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s',
        stream=sys.stderr,
    )

    try:
        amount_wei = to_wei(amount)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--amount')

    try:
        summary = trio.run(run_lifecycle, config, winner_count, amount_wei, title)
    except SettlementError as e:
        logger.error(f"Settlement failed: {e}")
        raise click.ClickException(json.dumps(e.to_dict()))

    click.echo(json.dumps(summary, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
