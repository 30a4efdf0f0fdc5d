"""
blockhunt/tests/test_config.py

Tests for configuration, unit conversion, commands and the error taxonomy.
"""

from decimal import Decimal

import pytest

from blockhunt.config import (
    BlockhuntConfig,
    DEFAULT_CONFIRMATION_TIMEOUT,
    WEI_PER_ETHER,
    ZERO_ADDRESS,
    prize_split_labels,
)
from blockhunt.errors import (
    ConfirmationTimeout,
    LedgerExecutionReverted,
    PreconditionViolation,
    SettlementError,
    ValidationError,
)
from blockhunt.ledger.units import (
    from_wei,
    is_valid_address,
    is_zero_address,
    normalize_address,
    to_wei,
)
from blockhunt.settlement import (
    CommandKind,
    Principal,
    Role,
    SettlementCommand,
    validate_amount,
    validate_winners,
)


ALICE = "0x" + "a1" * 20
BOB = "0x" + "B2" * 20


class TestBlockhuntConfig:
    """Test configuration loading."""

    def test_defaults(self):
        config = BlockhuntConfig()
        assert config.ledger.automine is True
        assert config.ledger.confirmation_timeout == DEFAULT_CONFIRMATION_TIMEOUT
        assert config.orchestrator.treasury_operator_id is None
        assert config.orchestrator.reconcile_on_start is True
        assert config.store.storage_dir is None
        assert config.log_level == "INFO"

    def test_from_env(self):
        config = BlockhuntConfig.from_env({
            "BLOCKHUNT_CONFIRMATION_TIMEOUT": "2.5",
            "BLOCKHUNT_POLL_INTERVAL": "0.2",
            "BLOCKHUNT_AUTOMINE": "off",
            "BLOCKHUNT_TREASURY_OPERATOR": "42",
            "BLOCKHUNT_STORAGE_DIR": "/tmp/blockhunt",
            "BLOCKHUNT_LOG_LEVEL": "debug",
        })

        assert config.ledger.confirmation_timeout == 2.5
        assert config.ledger.poll_interval == 0.2
        assert config.ledger.automine is False
        assert config.orchestrator.treasury_operator_id == 42
        assert config.store.storage_dir == "/tmp/blockhunt"
        assert config.log_level == "DEBUG"

    def test_invalid_values_fall_back(self):
        config = BlockhuntConfig.from_env({
            "BLOCKHUNT_CONFIRMATION_TIMEOUT": "soon",
            "BLOCKHUNT_POLL_INTERVAL": "-1",
            "BLOCKHUNT_TREASURY_OPERATOR": "alice",
        })
        assert config.ledger.confirmation_timeout == DEFAULT_CONFIRMATION_TIMEOUT
        assert config.ledger.poll_interval > 0
        assert config.orchestrator.treasury_operator_id is None

    def test_to_dict(self):
        data = BlockhuntConfig().to_dict()
        assert data["automine"] is True
        assert data["storage_dir"] is None

    def test_prize_split_labels(self):
        assert prize_split_labels() == ["100", "70/30", "50/30/20"]


class TestUnits:
    """Test address and amount helpers."""

    def test_to_wei(self):
        assert to_wei("1") == WEI_PER_ETHER
        assert to_wei("1.5") == 3 * WEI_PER_ETHER // 2
        assert to_wei(Decimal("0.000000000000000001")) == 1
        assert to_wei(2) == 2 * WEI_PER_ETHER

    @pytest.mark.parametrize("bad", [1.5, True, "abc", "1e-19", "NaN"])
    def test_to_wei_rejects(self, bad):
        with pytest.raises(ValueError):
            to_wei(bad)

    def test_to_wei_keeps_every_digit_of_large_amounts(self):
        assert to_wei("123456789012.000000000000000001") == 123456789012 * WEI_PER_ETHER + 1
        assert to_wei("98765432109876543210.123456789012345678") == (
            98765432109876543210123456789012345678
        )
        with pytest.raises(ValueError):
            to_wei("123456789012.0000000000000000001")

    def test_from_wei(self):
        assert from_wei(WEI_PER_ETHER // 4) == Decimal("0.25")

    def test_addresses(self):
        assert is_valid_address(ALICE)
        assert is_valid_address(BOB)
        assert not is_valid_address("0x123")
        assert not is_valid_address(None)
        assert is_zero_address(ZERO_ADDRESS)
        assert normalize_address(BOB) == BOB.lower()
        with pytest.raises(ValueError):
            normalize_address("nope")

    @pytest.mark.parametrize("suffix", ["\n", " ", "\t", "\r\n"])
    def test_surrounding_whitespace_is_invalid(self, suffix):
        assert not is_valid_address(ALICE + suffix)
        assert not is_valid_address(suffix + ALICE)
        assert not is_valid_address(ZERO_ADDRESS + suffix)
        with pytest.raises(ValueError):
            normalize_address(ALICE + suffix)


class TestCommands:
    """Test command construction and argument validation."""

    def test_factories(self):
        organizer = Principal(user_id=1, role=Role.ORGANIZER)
        command = SettlementCommand.set_winners(3, organizer, [ALICE])
        assert command.kind == CommandKind.SET_WINNERS
        assert command.winners == (ALICE,)
        assert SettlementCommand.fund(3, organizer, 10).amount == 10
        assert SettlementCommand.withdraw(organizer).hackathon_id is None

    def test_principal_role_is_required(self):
        with pytest.raises(TypeError):
            Principal(user_id=1)
        assert Principal(user_id=1, role=Role.USER).role == Role.USER

    def test_kind_properties(self):
        assert CommandKind.DISTRIBUTE.operation == "distribute_prizes"
        assert CommandKind.PAUSE.contract_level
        assert not CommandKind.FUND.contract_level

    def test_validate_winners_normalizes(self):
        assert validate_winners([ALICE, BOB]) == [ALICE, BOB.lower()]

    @pytest.mark.parametrize("winners", [
        [],
        None,
        [ALICE, ALICE],
        [ALICE, BOB.lower(), BOB],
        [ZERO_ADDRESS],
        ["0xzz"],
        [ALICE, BOB, "0x" + "c3" * 20, "0x" + "d4" * 20],
        [ZERO_ADDRESS + "\n"],
        [ALICE, ALICE + "\n"],
        [ALICE, " " + ALICE],
    ])
    def test_validate_winners_rejects(self, winners):
        with pytest.raises(ValidationError):
            validate_winners(winners, hackathon_id=1)

    def test_validate_amount(self):
        assert validate_amount(5) == 5
        for bad in (0, -1, 1.0, False, "5"):
            with pytest.raises(ValidationError):
                validate_amount(bad)


class TestErrors:
    """Test the error taxonomy."""

    def test_hierarchy(self):
        assert issubclass(LedgerExecutionReverted, PreconditionViolation)
        assert issubclass(ConfirmationTimeout, SettlementError)

    def test_to_dict(self):
        error = LedgerExecutionReverted("rejected", 4, tx_hash="0xabc", reason="Only organizer")
        assert error.to_dict() == {
            "error": "ledger_execution_reverted",
            "message": "rejected",
            "hackathon_id": 4,
            "tx_hash": "0xabc",
            "reason": "Only organizer",
        }
        assert ConfirmationTimeout("late", 1, tx_hash="0x1").to_dict()["tx_hash"] == "0x1"
