"""
ExperimentMonitor - lifecycle of one live A/B experiment.

    CONFIGURING -> RUNNING -> WINNER_DECLARED | INCONCLUSIVE | STOPPED

- CONFIGURING: enabled, no traffic yet
- RUNNING: events flowing; a flagged winner stays RUNNING until the
  operator acts
- WINNER_DECLARED: operator applied a flagged winner (terminal)
- INCONCLUSIVE: estimated duration reached with no winner (reported only)
- STOPPED: operator disabled the test; stats discarded

Traffic cutover to the winner is signalled to an external collaborator;
the monitor never moves real traffic itself.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Protocol, Tuple

from campaign_lab.experiments.errors import ExperimentError, InvalidEventError, InvalidTransition
from campaign_lab.experiments.models import ExperimentConfig
from campaign_lab.experiments.stats_engine import VariantEvent, VariantStat, VariantStatsEngine
from infra.logging_config import get_logger
from infra.result import Err, Ok, Result

if TYPE_CHECKING:
    from infra.config_loader import ExperimentSettings

logger = get_logger(__name__)


class ExperimentPhase(str, Enum):
    CONFIGURING = "configuring"
    RUNNING = "running"
    WINNER_DECLARED = "winner_declared"
    INCONCLUSIVE = "inconclusive"
    STOPPED = "stopped"


TERMINAL_PHASES = frozenset({ExperimentPhase.WINNER_DECLARED, ExperimentPhase.STOPPED})


@dataclass(frozen=True)
class WinnerAck:
    experiment_id: str
    variant_id: str
    variant_name: str
    chance_to_beat: float
    traffic: int
    declared_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class TrafficCutover(Protocol):
    """Ad-serving side that actually moves 100% of traffic to a variant."""

    def cut_over(self, experiment_id: str, variant_id: str) -> None:
        ...


class LoggingCutover:
    """Default collaborator: records the signal, moves nothing."""

    def __init__(self) -> None:
        self.signals: List[Tuple[str, str]] = []

    def cut_over(self, experiment_id: str, variant_id: str) -> None:
        self.signals.append((experiment_id, variant_id))
        logger.info(
            "traffic cutover requested",
            extra={"extra_data": {"experiment_id": experiment_id, "variant_id": variant_id}},
        )


class ExperimentMonitor:
    """
    Owns the config, the stats engine and the phase of one experiment.
    Exactly one task should feed events into a monitor.
    """

    def __init__(
        self,
        experiment_id: str,
        config: ExperimentConfig,
        *,
        settings: Optional[ExperimentSettings] = None,
        cutover: Optional[TrafficCutover] = None,
    ) -> None:
        if not config.enabled:
            raise InvalidTransition("cannot monitor a disabled experiment")
        self.experiment_id = experiment_id
        self.settings = settings
        self.cutover: TrafficCutover = cutover or LoggingCutover()
        self._config = config
        self._engine: Optional[VariantStatsEngine] = VariantStatsEngine.from_config(config, settings)
        self.phase = ExperimentPhase.CONFIGURING
        self.winner: Optional[WinnerAck] = None
        self.rejected_events = 0

    @property
    def config(self) -> ExperimentConfig:
        return self._config

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    # --- config changes ---

    def reconfigure(self, config: ExperimentConfig) -> None:
        """
        Swap in a new config. Disabling stops the experiment; a change in
        variant count resets the positional stats.
        """
        if not config.enabled:
            self._config = config
            self.stop()
            return
        if self.is_terminal:
            raise InvalidTransition(f"experiment already {self.phase.value}")

        reset = config.variant_count != self._config.variant_count
        self._config = config
        if reset:
            logger.info(
                "variant count changed, stats reset",
                extra={"extra_data": {"experiment_id": self.experiment_id, "variants": config.variant_count}},
            )
            self._engine = VariantStatsEngine.from_config(config, self.settings)
            self.phase = ExperimentPhase.CONFIGURING

    # --- events ---

    def ingest(self, event: VariantEvent) -> bool:
        """
        Apply one telemetry event. Returns False when the event was dropped
        (experiment stopped or decided); raises InvalidEventError when the
        event is malformed.
        """
        engine = self._engine
        if engine is None or self.is_terminal:
            logger.info(
                "event dropped",
                extra={"extra_data": {"experiment_id": self.experiment_id, "phase": self.phase.value}},
            )
            return False

        try:
            applied = engine.apply(event)
        except InvalidEventError:
            self.rejected_events += 1
            raise

        if applied and self.phase is ExperimentPhase.CONFIGURING:
            self.phase = ExperimentPhase.RUNNING
        return applied

    async def run(self, queue: "asyncio.Queue[Optional[VariantEvent]]") -> ExperimentPhase:
        """
        Consume events until a None sentinel or a terminal phase. Malformed
        events are logged and skipped; they never stop the consumer.
        """
        while not self.is_terminal:
            event = await queue.get()
            try:
                if event is None:
                    break
                try:
                    self.ingest(event)
                except InvalidEventError as exc:
                    logger.warning(
                        "consumer skipped invalid event: %s",
                        exc,
                        extra={"extra_data": {"experiment_id": self.experiment_id, **exc.details}},
                    )
            finally:
                queue.task_done()
        return self.phase

    # --- reads ---

    def snapshot(self) -> Tuple[VariantStat, ...]:
        if self._engine is None:
            return ()
        return self._engine.snapshot()

    def winners(self) -> List[str]:
        if self._engine is None:
            return []
        return self._engine.winners()

    # --- operator commands ---

    def apply_winner(self, variant_id: str) -> Result[WinnerAck, ExperimentError]:
        if self.is_terminal:
            return Err(InvalidTransition(f"experiment already {self.phase.value}"))
        if self._engine is None:
            return Err(InvalidTransition("no statistics available"))

        stat = self._engine.get(variant_id)
        if stat is None:
            return Err(InvalidTransition(f"unknown variant {variant_id!r}"))
        if not stat.is_winner:
            return Err(
                InvalidTransition(
                    f"variant {variant_id!r} has not crossed the winner threshold",
                    details={"chance_to_beat": stat.chance_to_beat, "traffic": stat.traffic},
                )
            )

        ack = WinnerAck(
            experiment_id=self.experiment_id,
            variant_id=stat.id,
            variant_name=stat.name,
            chance_to_beat=stat.chance_to_beat,
            traffic=stat.traffic,
        )
        self.cutover.cut_over(self.experiment_id, stat.id)
        self.phase = ExperimentPhase.WINNER_DECLARED
        self.winner = ack
        self._engine.close()
        logger.info(
            "winner applied",
            extra={"extra_data": {"experiment_id": self.experiment_id, "variant_id": stat.id}},
        )
        return Ok(ack)

    def check_deadline(self, days_elapsed: float) -> ExperimentPhase:
        """Mark INCONCLUSIVE once the planned duration passes with no winner."""
        duration = self._config.estimated_duration
        if self.is_terminal or duration is None:
            return self.phase
        if days_elapsed >= duration and not self.winners():
            self.phase = ExperimentPhase.INCONCLUSIVE
            logger.info(
                "experiment inconclusive",
                extra={"extra_data": {"experiment_id": self.experiment_id, "days_elapsed": days_elapsed}},
            )
        return self.phase

    def stop(self) -> None:
        """Safe at any time; in-flight and later events are dropped."""
        if self._engine is not None:
            self._engine.close()
        self._engine = None
        if self.phase is not ExperimentPhase.WINNER_DECLARED:
            self.phase = ExperimentPhase.STOPPED
        logger.info("experiment stopped", extra={"extra_data": {"experiment_id": self.experiment_id}})
