"""
AgentOrchestrator - Lifecycle of one autonomous agent.

Purpose: own the agent's wallet handle, schedule decision cycles, and publish
what happened on every cycle.

One cycle (strict order):
  snapshot -> DecisionSource.decide -> SafetyValidator.validate -> ActionExecutor.execute
  -> update AgentRuntimeState -> events

Cycles of one agent never overlap. Any exception inside a cycle becomes an
`error` event and forces the agent back to IDLE; the schedule keeps going.
"""
import asyncio
import logging
import time
from typing import List, Optional, Sequence

from .decision import DecisionSource, RuleDecisionSource, InferenceDecisionSource
from .events import EventChannel, Listener, Subscription
from .execution import ActionExecutor
from .inference import build_inference_client
from .safety import SafetyValidator
from .schemas import (
    ActionEvent,
    AgentRuntimeState,
    AgentSnapshot,
    AgentState,
    AgentStats,
    DecisionEvent,
    ErrorEvent,
    FallbackEvent,
    PeerBalance,
    ValidatedDecision,
)
from ..config import AgentConfig
from ..errors import InitializationError
from ..interfaces import ProtocolClient, WalletHandle, WalletProvider

logger = logging.getLogger("agent_wallets.agents.orchestrator")


class AgentOrchestrator:
    """
    Drives one agent's decision cycles.

    Scheduling state is STOPPED/RUNNING (`is_running`); the agent's FSM state
    (IDLE/TRADE/YIELD/REBAL) lives in AgentRuntimeState.
    """

    def __init__(
        self,
        agent_id: str,
        config: AgentConfig,
        wallet_provider: WalletProvider,
        protocol: ProtocolClient,
        decision_source: Optional[DecisionSource] = None,
        validator: Optional[SafetyValidator] = None,
        events: Optional[EventChannel] = None,
    ):
        self.agent_id = agent_id
        self.config = config
        self.wallet_provider = wallet_provider
        self.protocol = protocol
        self.events = events or EventChannel()
        self.validator = validator or SafetyValidator()

        self.wallet: Optional[WalletHandle] = None
        self.decision_source: Optional[DecisionSource] = decision_source
        self.executor: Optional[ActionExecutor] = None

        self._peers: List[WalletHandle] = []
        self._state = AgentRuntimeState()
        self._cycle_lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._current_cycle = 0

    async def init(self) -> "AgentOrchestrator":
        """
        Resolve the wallet and wire the decision source and executor.
        Must be called before start().

        Raises:
            InitializationError: wallet handle could not be obtained
        """
        try:
            wallet = await self.wallet_provider.get_or_create(self.agent_id)
        except Exception as e:
            logger.error(f"[{self.agent_id}] wallet unavailable: {e}")
            raise InitializationError(self.agent_id, str(e)) from e
        if wallet is None:
            raise InitializationError(self.agent_id, "wallet provider returned no handle")

        self.wallet = wallet
        if self.decision_source is None:
            self.decision_source = self._build_decision_source()
        elif isinstance(self.decision_source, InferenceDecisionSource) and self.decision_source.on_fallback is None:
            self.decision_source.on_fallback = self._on_fallback
        self.executor = ActionExecutor(self.protocol)

        logger.info(f"[{self.agent_id}] initialised - wallet: {wallet.identifier()}")
        return self

    def _build_decision_source(self) -> DecisionSource:
        rules = RuleDecisionSource(self.config)
        if not self.config.uses_inference():
            return rules
        return InferenceDecisionSource(
            self.config,
            build_inference_client(self.config),
            fallback=rules,
            on_fallback=self._on_fallback,
        )

    def _on_fallback(self, snapshot: AgentSnapshot, error: str) -> None:
        self.events.publish(FallbackEvent(agent_id=self.agent_id, cycle=snapshot.cycle_number, error=error))

    # ─── Peers & observers ───────────────────────────────────────────────

    def set_peers(self, peers: Sequence[WalletHandle]) -> None:
        """Replace the peer set; takes effect from the next cycle."""
        own_id = self.wallet.identifier() if self.wallet is not None else self.agent_id
        self._peers = [p for p in peers if p.identifier() != own_id]

    @property
    def peers(self) -> List[WalletHandle]:
        return list(self._peers)

    def subscribe(self, event_type: str, listener: Listener) -> Subscription:
        return self.events.subscribe(event_type, listener)

    # ─── Scheduling ──────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._state.running

    async def start(self, interval_seconds: Optional[float] = None) -> None:
        """
        Run one cycle now, then one every interval until stop().
        Calling start() while running is a no-op.
        """
        if self._state.running:
            return
        if self.wallet is None or self.executor is None:
            raise InitializationError(self.agent_id, "init() must be called before start()")

        interval = interval_seconds if interval_seconds is not None else self.config.decision_interval_seconds
        self._state.running = True
        self._stop_event = asyncio.Event()
        logger.info(f"[{self.agent_id}] starting agent loop (interval: {interval}s)")

        await self.run_cycle()
        if self._state.running:
            self._task = asyncio.get_running_loop().create_task(
                self._schedule(interval, self._stop_event),
                name=f"agent-loop-{self.agent_id}",
            )

    async def _schedule(self, interval: float, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + interval
        while not stop_event.is_set():
            delay = next_tick - loop.time()
            if delay > 0:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass
            if stop_event.is_set():
                break
            await self.run_cycle()
            # missed ticks collapse into one, run right after the overrunning cycle
            next_tick = max(next_tick + interval, loop.time())

    async def stop(self) -> None:
        """
        Stop scheduling new cycles. An in-flight cycle completes.
        Calling stop() while stopped is a no-op.
        """
        if not self._state.running:
            return
        self._state.running = False
        if self._stop_event is not None:
            self._stop_event.set()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            await task
        logger.info(f"[{self.agent_id}] agent stopped.")

    # ─── One cycle ───────────────────────────────────────────────────────

    async def run_cycle(self) -> Optional[ValidatedDecision]:
        """Run exactly one decision cycle; never raises for cycle-level failures."""
        async with self._cycle_lock:
            return await self._run_cycle_locked()

    async def _run_cycle_locked(self) -> Optional[ValidatedDecision]:
        self._state.cycle_count += 1
        self._current_cycle = self._state.cycle_count
        peers = list(self._peers)
        start_time = time.time()

        try:
            snapshot = await self._build_snapshot(peers)
            decision = await self.decision_source.decide(snapshot)
            validated = self.validator.validate(
                decision,
                snapshot.balance,
                self.config,
                peer_ids=snapshot.peer_ids,
            )
            final = validated.decision
            prev_state = self._state.state
            next_state = AgentState(final.action)

            logger.info(
                f"[{self.agent_id}] Cycle {snapshot.cycle_number} | bal={snapshot.balance:.4f} | "
                f"{prev_state.value} -> {next_state.value} ({final.source}) | {final.reason}"
            )
            self.events.publish(DecisionEvent(
                agent_id=self.agent_id,
                cycle=snapshot.cycle_number,
                balance=snapshot.balance,
                prev_state=prev_state,
                next_state=next_state,
                source=final.source,
                reason=final.reason,
            ))
            self._state.state = next_state

            outcome = await self.executor.execute(final, self.wallet, peers)

            if outcome.action == AgentState.TRADE:
                self._state.trade_count += 1
                self._state.total_volume += outcome.amount or 0.0

            if outcome.performed:
                self.events.publish(ActionEvent(
                    agent_id=self.agent_id,
                    action=outcome.action,
                    amount=outcome.amount,
                    target=outcome.target,
                    receipt=outcome.receipt,
                    target_balance=outcome.target_balance,
                    source=outcome.source,
                    reason=outcome.reason,
                ))

            logger.debug(f"[{self.agent_id}] cycle {snapshot.cycle_number} done in {(time.time() - start_time) * 1000:.0f}ms")
            return validated

        except Exception as e:
            failed_state = self._state.state
            logger.error(f"[{self.agent_id}] error in state {failed_state.value}: {e}")
            self.events.publish(ErrorEvent(agent_id=self.agent_id, state=failed_state, error=str(e)))
            self._state.state = AgentState.IDLE
            return None

    async def _build_snapshot(self, peers: Sequence[WalletHandle]) -> AgentSnapshot:
        balance = await self.wallet.get_balance()
        peer_balances = await asyncio.gather(
            *(p.get_balance() for p in peers),
            return_exceptions=True,
        )
        peer_rows = []
        for peer, bal in zip(peers, peer_balances):
            if isinstance(bal, BaseException):
                logger.warning(f"[{self.agent_id}] balance read failed for peer {peer.identifier()}: {bal}")
                bal = None
            peer_rows.append(PeerBalance(peer_id=peer.identifier(), balance=bal))

        return AgentSnapshot(
            agent_id=self.agent_id,
            balance=balance,
            cycle_number=self._current_cycle,
            trade_count=self._state.trade_count,
            total_volume=self._state.total_volume,
            peers=peer_rows,
            max_trade_per_tx=self.config.max_trade_per_tx,
        )

    # ─── Read-only views ─────────────────────────────────────────────────

    def get_state(self) -> AgentRuntimeState:
        return self._state.model_copy()

    def get_stats(self) -> AgentStats:
        return AgentStats(
            agent_id=self.agent_id,
            wallet_id=self.wallet.identifier() if self.wallet else None,
            state=self._state.state,
            cycles=self._state.cycle_count,
            trades=self._state.trade_count,
            volume=self._state.total_volume,
            running=self._state.running,
            decision_source=self.decision_source.get_stats() if self.decision_source else {},
        )
