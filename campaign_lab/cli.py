from __future__ import annotations

import argparse
import asyncio
import json
import random
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from campaign_lab.config.thresholds import MAX_VARIANTS, MIN_VARIANTS
from campaign_lab.experiments.allocator import allocate
from campaign_lab.experiments.errors import ExperimentError
from campaign_lab.experiments.models import AllocationMode, ExperimentConfig, TestVariable
from campaign_lab.experiments.monitor import ExperimentMonitor
from campaign_lab.experiments.planner import SampleSizePlanner, is_ab_test_eligible
from campaign_lab.experiments.policies import policy_for
from campaign_lab.experiments.simulator import TelemetrySimulator
from infra.config_loader import AppConfig, load_config
from infra.logging_config import get_logger, log_kv, setup_logging

logger = get_logger(__name__)

DEMO_SCHEME = {"benefit": "20% off coupon", "channel": "SMS", "gameplay": "Stacked discounts"}


def _emit(payload: Dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n")


def _demo_config(variant_count: int, mode: str, control_percent: float) -> ExperimentConfig:
    cfg = ExperimentConfig.disabled(DEMO_SCHEME["benefit"]).enable_test(TestVariable.BENEFIT, DEMO_SCHEME)
    cfg = cfg.set_variant(1, "Free shipping")
    for i in range(2, variant_count):
        cfg = cfg.add_variant(f"Bundle offer {i}")
    return cfg.set_control_traffic(control_percent).set_allocation_mode(mode)


def cmd_plan(app: AppConfig, variants: int, audience: int) -> int:
    settings = app.experiments
    planner = SampleSizePlanner.from_settings(settings)
    plan = planner.plan(variants, audience)
    log_kv(logger, "plan computed", variants=variants, audience=audience, duration=plan.estimated_duration)
    out = plan.to_dict()
    out["allocation"] = allocate(settings.default_control_percent, variants).to_dict()
    out["ab_test_eligible"] = is_ab_test_eligible(audience, settings.ab_test_audience_threshold)
    out["audience_size"] = audience
    _emit(out)
    return 0


async def _drive(monitor: ExperimentMonitor, sim: TelemetrySimulator, ticks: int) -> None:
    queue: "asyncio.Queue[Any]" = asyncio.Queue()
    consumer = asyncio.create_task(monitor.run(queue))
    for event in sim.stream(ticks):
        await queue.put(event)
    await queue.put(None)
    await consumer


def cmd_simulate(
    app: AppConfig,
    variants: int,
    ticks: int,
    seed: int,
    mode: str,
    control_percent: Optional[float],
    apply_winner: bool,
) -> int:
    if control_percent is None:
        control_percent = app.experiments.default_control_percent
    cfg = _demo_config(variants, mode, control_percent)
    monitor = ExperimentMonitor("simulated", cfg, settings=app.experiments)
    sim = TelemetrySimulator(variant_count=cfg.variant_count, rng=random.Random(seed))
    asyncio.run(_drive(monitor, sim, ticks))

    stats = monitor.snapshot()
    allocation = cfg.allocation()
    shares = policy_for(cfg.allocation_mode, rng=random.Random(seed)).reallocate(allocation, stats)
    out: Dict[str, Any] = {
        "allocation": allocation.to_dict(),
        "allocation_mode": cfg.allocation_mode.value,
        "next_shares": [round(float(s), 1) for s in shares],
        "phase": monitor.phase.value,
        "stats": [s.to_dict() for s in stats],
        "winners": monitor.winners(),
    }
    if apply_winner and monitor.winners():
        # Highest chance_to_beat among flagged variants
        best = max((s for s in stats if s.is_winner), key=lambda s: s.chance_to_beat)
        result = monitor.apply_winner(best.id)
        if result.is_ok():
            out["applied_winner"] = result.unwrap().variant_id
        out["phase"] = monitor.phase.value
    _emit(out)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="campaign_lab", description="A/B experiment planning and simulation.")
    p.add_argument("--config", default=None, help="Path to a YAML config (default: config/default.yml)")

    sub = p.add_subparsers(dest="cmd", required=True)

    sp_plan = sub.add_parser("plan", help="Minimum sample size and estimated duration.")
    sp_plan.add_argument("--variants", type=int, required=True, help="Variant count, control included.")
    sp_plan.add_argument("--audience", type=int, required=True, help="Audience size.")

    sp_sim = sub.add_parser("simulate", help="Feed simulated telemetry through the live monitor.")
    sp_sim.add_argument("--variants", type=int, default=2, help="Variant count, control included.")
    sp_sim.add_argument("--ticks", type=int, default=500, help="Telemetry ticks to simulate.")
    sp_sim.add_argument("--seed", type=int, default=42, help="Random seed.")
    sp_sim.add_argument(
        "--mode",
        default=AllocationMode.STATIC.value,
        choices=[m.value for m in AllocationMode],
        help="Allocation mode.",
    )
    sp_sim.add_argument("--control-percent", type=float, default=None, help="Control traffic percent.")
    sp_sim.add_argument("--apply-winner", action="store_true", help="Apply the strongest winner, if any.")

    args = p.parse_args(argv)
    low = 1 if args.cmd == "plan" else MIN_VARIANTS
    if not (low <= args.variants <= MAX_VARIANTS):
        p.error(f"--variants must be between {low} and {MAX_VARIANTS}")
    if getattr(args, "audience", 0) < 0:
        p.error("--audience must be >= 0")

    app = load_config(Path(args.config) if args.config else None)
    # stdout carries the JSON result
    setup_logging(app.logging, stream=sys.stderr)

    try:
        if args.cmd == "plan":
            return cmd_plan(app, args.variants, args.audience)
        if args.cmd == "simulate":
            return cmd_simulate(
                app,
                args.variants,
                args.ticks,
                args.seed,
                args.mode,
                args.control_percent,
                args.apply_winner,
            )
    except ExperimentError as exc:
        logger.error("command failed: %s", exc, extra={"extra_data": {"code": exc.code, **exc.details}})
        sys.stderr.write(f"ERROR: {exc}\n")
        return 2
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
