"""
ActionExecutor - Performs the side effect of a validated decision.

Purpose: map a validated Decision onto Protocol and Wallet collaborator calls.
- TRADE: protocol.execute_trade(wallet, target, amount)
- YIELD: protocol.simulate_yield(wallet, amount)
- REBAL: pool average of agent + peers, protocol.rebalance_pool
- IDLE:  nothing

Collaborator exceptions propagate; the orchestrator owns per-cycle isolation.
"""
import asyncio
import logging
from typing import Sequence

from .schemas import ActionOutcome, AgentState, Decision
from ..interfaces import ProtocolClient, WalletHandle

logger = logging.getLogger("agent_wallets.agents.execution")


class ActionExecutor:
    """Executes validated decisions against external collaborators."""

    def __init__(self, protocol: ProtocolClient):
        self.protocol = protocol

    async def execute(
        self,
        decision: Decision,
        wallet: WalletHandle,
        peers: Sequence[WalletHandle] = (),
    ) -> ActionOutcome:
        """
        Execute a decision that already passed the SafetyValidator.

        Args:
            decision: Validated decision
            wallet: The acting agent's wallet
            peers: Peer wallets captured for this cycle

        Returns:
            ActionOutcome describing what was done
        """
        action = AgentState(decision.action)
        agent_id = wallet.identifier()

        if action == AgentState.TRADE:
            return await self._trade(decision, wallet, agent_id)
        if action == AgentState.YIELD:
            return await self._yield(decision, wallet, agent_id)
        if action == AgentState.REBAL:
            return await self._rebalance(decision, wallet, peers, agent_id)

        logger.info(f"[{agent_id}] idle - {decision.reason or 'scanning for opportunities'}")
        return ActionOutcome(action=AgentState.IDLE, source=decision.source, reason=decision.reason)

    async def _trade(self, decision: Decision, wallet: WalletHandle, agent_id: str) -> ActionOutcome:
        logger.info(f"[{agent_id}] TRADE {decision.amount:.6f} -> {decision.target} | {decision.reason}")
        receipt = await self.protocol.execute_trade(wallet, decision.target, decision.amount)
        return ActionOutcome(
            action=AgentState.TRADE,
            amount=decision.amount,
            target=decision.target,
            receipt=receipt,
            source=decision.source,
            reason=decision.reason,
        )

    async def _yield(self, decision: Decision, wallet: WalletHandle, agent_id: str) -> ActionOutcome:
        logger.info(f"[{agent_id}] YIELD {decision.amount:.6f}")
        receipt = await self.protocol.simulate_yield(wallet, decision.amount)
        return ActionOutcome(
            action=AgentState.YIELD,
            amount=decision.amount,
            receipt=receipt,
            source=decision.source,
            reason=decision.reason,
        )

    async def _rebalance(
        self,
        decision: Decision,
        wallet: WalletHandle,
        peers: Sequence[WalletHandle],
        agent_id: str,
    ) -> ActionOutcome:
        pool = [wallet, *peers]
        balances = await asyncio.gather(*(w.get_balance() for w in pool))
        average = sum(balances) / len(balances)
        logger.info(f"[{agent_id}] REBAL across {len(pool)} wallets - pool avg: {average:.4f}")
        await self.protocol.rebalance_pool(pool, average)
        return ActionOutcome(
            action=AgentState.REBAL,
            target_balance=average,
            source=decision.source,
            reason=decision.reason,
        )
