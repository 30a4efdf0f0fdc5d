"""
blockhunt/metrics.py

Prometheus metrics for settlement orchestration.

Tracks command outcomes and latency, reconciliation sweeps, divergences
repaired, and the value moved through the ledger.

Usage:
    from blockhunt.metrics import SettlementMetrics

    metrics = SettlementMetrics()
    orchestrator = SettlementOrchestrator(store, ledger, metrics=metrics)

    prometheus_output = metrics.collect()
"""

import time
import logging
from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, List, Optional

logger = logging.getLogger("blockhunt.metrics")


# Outcome labels used by the orchestrator
OUTCOME_CONFIRMED = "confirmed"
OUTCOME_REJECTED = "rejected"
OUTCOME_REVERTED = "reverted"
OUTCOME_SUBMISSION_FAILED = "submission_failed"
OUTCOME_UNKNOWN = "unknown"


@dataclass
class CommandRecord:
    """Record of a single settlement command."""
    command: str
    outcome: str
    duration_ms: float
    timestamp: float
    hackathon_id: Optional[int] = None
    error: Optional[str] = None


class SettlementMetrics:
    """
    Thread-safe collector for settlement metrics.

    Exposes a Prometheus text rendering (collect) and a dictionary view
    (get_stats) for JSON consumers.
    """

    METRICS = {
        "blockhunt_commands_total": {
            "type": "counter",
            "help": "Settlement commands by command and outcome",
        },
        "blockhunt_command_duration_seconds": {
            "type": "histogram",
            "help": "Submit-to-confirm latency of confirmed commands",
        },
        "blockhunt_reconciliations_total": {
            "type": "counter",
            "help": "Reconciliation passes by result",
        },
        "blockhunt_divergent_fields_total": {
            "type": "counter",
            "help": "Mirrored fields overwritten from the ledger",
        },
        "blockhunt_wei_moved_total": {
            "type": "counter",
            "help": "Wei moved by confirmed commands",
        },
        "blockhunt_blocked_hackathons": {
            "type": "gauge",
            "help": "Hackathons waiting for a ledger re-read",
        },
        "blockhunt_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
    }

    LATENCY_BUCKETS = [0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]

    def __init__(self, max_records: int = 10000):
        self._lock = Lock()
        self._max_records = max_records
        self._initialize()

    def _initialize(self) -> None:
        self._start_time = time.time()
        self._records: List[CommandRecord] = []
        self._command_counts: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._reconciliations: Dict[str, int] = defaultdict(int)
        self._divergent_fields: Dict[str, int] = defaultdict(int)
        self._wei_moved: Dict[str, int] = defaultdict(int)
        self._blocked = 0

        self._latency_counts = {b: 0 for b in self.LATENCY_BUCKETS}
        self._latency_sum = 0.0
        self._latency_count = 0

    def record_command(
        self,
        command: str,
        outcome: str,
        duration_ms: float = 0,
        hackathon_id: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Record the outcome of a command.

        Args:
            command: Command name (end, fund, set_winners, ...)
            outcome: One of the OUTCOME_* labels
            duration_ms: Time from acceptance to outcome
            hackathon_id: Target hackathon, if any
            error: Error message for non-confirmed outcomes
        """
        record = CommandRecord(
            command=command,
            outcome=outcome,
            duration_ms=duration_ms,
            timestamp=time.time(),
            hackathon_id=hackathon_id,
            error=error,
        )

        with self._lock:
            self._records.append(record)
            if len(self._records) > self._max_records:
                self._records = self._records[-self._max_records // 2:]

            self._command_counts[command][outcome] += 1

            if outcome == OUTCOME_CONFIRMED:
                seconds = duration_ms / 1000
                self._latency_sum += seconds
                self._latency_count += 1
                for bucket in self.LATENCY_BUCKETS:
                    if seconds <= bucket:
                        self._latency_counts[bucket] += 1

        if outcome == OUTCOME_UNKNOWN:
            logger.warning(f"Command {command} on {hackathon_id} has unknown outcome: {error}")

    def record_reconciliation(self, diverged_fields: List[str], failed: bool = False) -> None:
        """Record one reconciliation pass."""
        with self._lock:
            if failed:
                self._reconciliations["failed"] += 1
            elif diverged_fields:
                self._reconciliations["repaired"] += 1
            else:
                self._reconciliations["consistent"] += 1
            for name in diverged_fields:
                self._divergent_fields[name] += 1

    def record_value(self, command: str, amount_wei: int) -> None:
        """Record wei moved by a confirmed command."""
        with self._lock:
            self._wei_moved[command] += amount_wei

    def set_blocked(self, count: int) -> None:
        with self._lock:
            self._blocked = count

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines: List[str] = []

        def header(name: str) -> None:
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        with self._lock:
            header("blockhunt_commands_total")
            for command, outcomes in sorted(self._command_counts.items()):
                for outcome, count in sorted(outcomes.items()):
                    lines.append(
                        f'blockhunt_commands_total{{command="{command}",outcome="{outcome}"}} {count}'
                    )

            header("blockhunt_command_duration_seconds")
            for bucket in self.LATENCY_BUCKETS:
                lines.append(
                    f'blockhunt_command_duration_seconds_bucket{{le="{bucket}"}} '
                    f'{self._latency_counts[bucket]}'
                )
            lines.append(f'blockhunt_command_duration_seconds_bucket{{le="+Inf"}} {self._latency_count}')
            lines.append(f"blockhunt_command_duration_seconds_sum {self._latency_sum}")
            lines.append(f"blockhunt_command_duration_seconds_count {self._latency_count}")

            header("blockhunt_reconciliations_total")
            for result, count in sorted(self._reconciliations.items()):
                lines.append(f'blockhunt_reconciliations_total{{result="{result}"}} {count}')

            header("blockhunt_divergent_fields_total")
            for name, count in sorted(self._divergent_fields.items()):
                lines.append(f'blockhunt_divergent_fields_total{{field="{name}"}} {count}')

            header("blockhunt_wei_moved_total")
            for command, amount in sorted(self._wei_moved.items()):
                lines.append(f'blockhunt_wei_moved_total{{command="{command}"}} {amount}')

            header("blockhunt_blocked_hackathons")
            lines.append(f"blockhunt_blocked_hackathons {self._blocked}")

            header("blockhunt_uptime_seconds")
            lines.append(f"blockhunt_uptime_seconds {time.time() - self._start_time:.0f}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON API).

        Returns:
            Dictionary of metric values
        """
        with self._lock:
            commands = {c: dict(o) for c, o in self._command_counts.items()}
            failures = [
                {"command": r.command, "outcome": r.outcome,
                 "hackathon_id": r.hackathon_id, "error": r.error}
                for r in self._records[-20:]
                if r.outcome != OUTCOME_CONFIRMED
            ]
            return {
                "commands": commands,
                "reconciliations": dict(self._reconciliations),
                "divergent_fields": dict(self._divergent_fields),
                "wei_moved": dict(self._wei_moved),
                "blocked_hackathons": self._blocked,
                "avg_confirm_seconds": (
                    self._latency_sum / self._latency_count if self._latency_count else 0.0
                ),
                "recent_failures": failures,
                "uptime_seconds": time.time() - self._start_time,
            }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._initialize()
