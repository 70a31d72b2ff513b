"""
Multi-agent harness - spawns N autonomous agent wallets on the in-memory
ledger and runs them concurrently.

Usage:
    python -m agent_wallets.main --agents 3 --duration 60 --interval 2
    python -m agent_wallets.main --source inference
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import List

from .agents.schemas import ActionEvent, AgentState, AgentStats, ErrorEvent
from .config import AgentConfig, DecisionSourceKind, load_config
from .runtime import AgentRuntime

logger = logging.getLogger("agent_wallets.main")

STATS_EVERY_SECONDS = 30.0


def print_stats(stats: List[AgentStats]) -> None:
    """Print one line per agent."""
    print("\n" + "-" * 60)
    print("  AGENT STATS SNAPSHOT")
    print("-" * 60)
    for s in stats:
        print(
            f"  {s.agent_id:<12} | state: {s.state.value:<5} | "
            f"cycles: {s.cycles:>3} | trades: {s.trades:>3} | vol: {s.volume:.4f}"
        )
    print("-" * 60 + "\n")


def log_action(event: ActionEvent) -> None:
    tag = f"[{event.agent_id}]"
    if event.action == AgentState.TRADE:
        logger.info(f"{tag} TRADE {event.amount} -> {event.target} | receipt: {event.receipt}")
    elif event.action == AgentState.YIELD:
        logger.info(f"{tag} YIELD {event.amount} | receipt: {event.receipt or 'n/a'}")
    elif event.action == AgentState.REBAL:
        logger.info(f"{tag} REBAL triggered | target: {event.target_balance:.4f}")


def log_error(event: ErrorEvent) -> None:
    logger.error(f"[{event.agent_id}] ERROR in {event.state.value}: {event.error}")


async def run_harness(cfg: AgentConfig, agent_count: int, duration: float, interval: float) -> List[AgentStats]:
    """Run agents until the duration elapses or a shutdown signal arrives."""
    runtime = AgentRuntime(cfg)
    runtime.events.subscribe("action", log_action)
    runtime.events.subscribe("error", log_error)

    print("\n" + "=" * 60)
    print("  Agent Wallets - Multi-Agent Harness")
    print(f"  Agents: {agent_count}  |  Duration: {duration}s  |  Tick: {interval}s")
    print(f"  Decision source: {cfg.decision_source.value}  |  Limits: {cfg.get_limits_description()}")
    print("=" * 60 + "\n")

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    handled = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
            handled.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"signal handler for {sig} not supported here")

    logger.info("Initialising agents...")
    await runtime.spawn_agents(agent_count)

    logger.info(f"Starting {agent_count} agents...")
    await runtime.start_all(interval)

    deadline = loop.time() + duration
    while not shutdown.is_set():
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        try:
            await asyncio.wait_for(shutdown.wait(), timeout=min(STATS_EVERY_SECONDS, remaining))
        except asyncio.TimeoutError:
            print_stats(runtime.stats())

    logger.info("Shutting down agents...")
    await runtime.stop_all()
    for sig in handled:
        loop.remove_signal_handler(sig)
    stats = runtime.stats()
    print_stats(stats)
    logger.info("Harness complete.")
    return stats


def main() -> int:
    """Entry point."""
    parser = argparse.ArgumentParser(description="Run autonomous agent wallets against an in-memory ledger")
    parser.add_argument("--agents", type=int, default=3, help="Number of agents to spawn")
    parser.add_argument("--duration", type=float, default=180.0, help="Run time in seconds")
    parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between decision cycles (default: AGENT_DECISION_INTERVAL_MS)",
    )
    parser.add_argument(
        "--source",
        choices=[k.value for k in DecisionSourceKind],
        help="Decision source (default: AGENT_DECISION_SOURCE)",
    )
    args = parser.parse_args()

    try:
        cfg = load_config()
    except ValueError as e:
        print(f"CONFIGURATION ERROR: {e}")
        return 1
    if args.source:
        cfg.decision_source = DecisionSourceKind(args.source)

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.agents < 1:
        logger.error("--agents must be at least 1")
        return 1
    interval = args.interval if args.interval is not None else cfg.decision_interval_seconds
    if interval <= 0:
        logger.error("--interval must be positive")
        return 1

    try:
        asyncio.run(run_harness(cfg, args.agents, args.duration, interval))
    except Exception as e:
        logger.error(f"Fatal harness error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
