"""
MultiSigCoordinator - M-of-N co-signature workflow for high-value transfers.

Lifecycle per proposal:
  1. A proposer creates a transfer intent and pre-signs it (PENDING)
  2. Authorized co-signers add partial signatures
  3. When M distinct signatures are recorded the proposal is APPROVED (once)
  4. Any caller may execute an APPROVED proposal; the fully co-signed transfer
     is broadcast exactly once (EXECUTED)
  A PENDING proposal can be explicitly REJECTED instead.

The balance floor from AgentConfig binds here as it does in the
SafetyValidator: a proposal may never leave its proposer below
balance_floor. It is checked at creation and again right before broadcast.

Proposals live in an in-memory arena keyed by id. A registry lock guards the
arena; one lock per proposal serialises co_sign / execute / reject, so the
approval transition and the broadcast each happen exactly once under
concurrent callers. Proposals never expire here.
"""
import asyncio
import logging
import math
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .schemas import (
    CoSignResult,
    MultiSigProposal,
    ProposalStatus,
    SignedTransfer,
    TransferIntent,
)
from ..errors import (
    AlreadyExecutedError,
    FloorBreachError,
    InvalidProposalError,
    InvalidStateError,
    InvalidThresholdError,
    NotApprovedError,
    NotFoundError,
    UnauthorizedSignerError,
)
from ..config import AgentConfig
from ..interfaces import WalletHandle

logger = logging.getLogger("agent_wallets.wallet.multisig")

SIGNING_STATUSES = (ProposalStatus.PENDING, ProposalStatus.APPROVED)


def _new_proposal_id() -> str:
    return f"msig-{uuid.uuid4().hex[:8]}"


class MultiSigCoordinator:
    """Owns every MultiSigProposal; callers only ever see copies."""

    def __init__(self, config: Optional[AgentConfig] = None):
        self.config = config or AgentConfig()
        self._proposals: Dict[str, MultiSigProposal] = {}
        self._proposers: Dict[str, WalletHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()

    async def create_proposal(
        self,
        proposer: WalletHandle,
        target: str,
        amount: float,
        description: str,
        required_signers: int,
        co_signers: Sequence[WalletHandle] = (),
    ) -> MultiSigProposal:
        """
        Create a transfer proposal and record the proposer's signature.

        Args:
            proposer: Wallet the funds leave; signs first
            target: Destination identifier
            amount: Transfer amount
            description: Human-readable purpose
            required_signers: M in M-of-N
            co_signers: The other N-1 wallets allowed to sign

        Raises:
            InvalidThresholdError: M < 1 or M > N
            InvalidProposalError: amount not a positive number
            FloorBreachError: amount would leave the proposer below balance_floor
        """
        proposer_id = proposer.identifier()
        authorized: List[str] = [proposer_id]
        for signer in co_signers:
            signer_id = signer.identifier()
            if signer_id not in authorized:
                authorized.append(signer_id)

        if required_signers < 1 or required_signers > len(authorized):
            raise InvalidThresholdError(required_signers, len(authorized))
        if amount is None or not math.isfinite(amount) or amount <= 0:
            raise InvalidProposalError(f"amount must be a positive number, got {amount}")
        self._check_floor("", await proposer.get_balance(), amount)

        intent = TransferIntent(
            source=proposer_id,
            destination=target,
            amount=amount,
            memo=description,
        )
        signed = await proposer.partial_sign(intent)

        async with self._registry_lock:
            proposal_id = _new_proposal_id()
            while proposal_id in self._proposals:
                proposal_id = _new_proposal_id()

            proposal = MultiSigProposal(
                proposal_id=proposal_id,
                proposer_id=proposer_id,
                description=description,
                intent=intent,
                required_signers=required_signers,
                authorized_signers=authorized,
                signatures={proposer_id: signed.signature},
            )
            if proposal.threshold_met:
                proposal.status = ProposalStatus.APPROVED
            self._proposals[proposal_id] = proposal
            self._locks[proposal_id] = asyncio.Lock()
            self._proposers[proposal_id] = proposer

        logger.info(
            f"MultiSig: proposal {proposal_id} created by {proposer_id} "
            f"- {amount} -> {target} | {required_signers}-of-{len(authorized)}"
        )
        return proposal.model_copy(deep=True)

    async def co_sign(self, proposal_id: str, signer: WalletHandle) -> CoSignResult:
        """
        Add a signer's partial signature.

        Idempotent per signer: signing twice does not double-count. The
        proposal becomes APPROVED exactly once, when the count first reaches M.

        Raises:
            NotFoundError: unknown proposal
            InvalidStateError: proposal is EXECUTED or REJECTED
            UnauthorizedSignerError: signer not in authorized_signers
        """
        proposal, lock = await self._lookup(proposal_id)
        signer_id = signer.identifier()

        async with lock:
            self._check_can_sign(proposal, signer_id)
            if signer_id in proposal.signatures:
                logger.warning(f"MultiSig: {signer_id} already signed {proposal_id}")
                return self._co_sign_result(proposal, newly_signed=False)
            intent = proposal.intent

        # sign outside the lock; the wallet may be remote
        signed = await signer.partial_sign(intent)

        async with lock:
            self._check_can_sign(proposal, signer_id)
            if signer_id in proposal.signatures:
                return self._co_sign_result(proposal, newly_signed=False)

            proposal.signatures[signer_id] = signed.signature
            logger.info(
                f"MultiSig: {signer_id} co-signed {proposal_id} "
                f"({proposal.signature_count}/{proposal.required_signers})"
            )
            if proposal.status == ProposalStatus.PENDING and proposal.threshold_met:
                proposal.status = ProposalStatus.APPROVED
                logger.info(
                    f"MultiSig: proposal {proposal_id} APPROVED with "
                    f"{proposal.signature_count} signatures"
                )
            return self._co_sign_result(proposal, newly_signed=True)

    async def execute(self, proposal_id: str, executor: WalletHandle) -> str:
        """
        Broadcast an approved proposal's co-signed transfer, exactly once.

        Returns:
            Broadcast receipt

        Raises:
            NotFoundError: unknown proposal
            NotApprovedError: proposal is PENDING or REJECTED
            AlreadyExecutedError: proposal was already executed
            FloorBreachError: the proposer's balance no longer covers the amount
                above balance_floor; the proposal stays APPROVED
            BroadcastError: from the executor's wallet; the proposal stays APPROVED
        """
        proposal, lock = await self._lookup(proposal_id)

        async with lock:
            if proposal.status == ProposalStatus.EXECUTED:
                raise AlreadyExecutedError(proposal_id)
            if proposal.status != ProposalStatus.APPROVED:
                raise NotApprovedError(
                    proposal_id,
                    proposal.signature_count,
                    proposal.required_signers,
                    proposal.status.value,
                )

            proposer = self._proposers[proposal_id]
            self._check_floor(proposal_id, await proposer.get_balance(), proposal.intent.amount)

            logger.info(f"MultiSig: executing proposal {proposal_id} via {executor.identifier()}...")
            signed = SignedTransfer(intent=proposal.intent, signatures=dict(proposal.signatures))
            receipt = await executor.broadcast(signed)

            proposal.status = ProposalStatus.EXECUTED
            proposal.executed_at = datetime.utcnow()
            proposal.execution_result = receipt

        logger.info(f"MultiSig: proposal {proposal_id} EXECUTED - receipt: {receipt}")
        return receipt

    async def reject(self, proposal_id: str, reason: str = "") -> MultiSigProposal:
        """
        Reject a PENDING proposal.

        Raises:
            NotFoundError: unknown proposal
            InvalidStateError: proposal is not PENDING
        """
        proposal, lock = await self._lookup(proposal_id)

        async with lock:
            if proposal.status != ProposalStatus.PENDING:
                raise InvalidStateError(proposal_id, proposal.status.value, "reject")
            proposal.status = ProposalStatus.REJECTED
            proposal.rejected_at = datetime.utcnow()
            proposal.rejection_reason = reason
            snapshot = proposal.model_copy(deep=True)

        logger.info(f"MultiSig: proposal {proposal_id} REJECTED - {reason}")
        return snapshot

    def get_proposal(self, proposal_id: str) -> MultiSigProposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise NotFoundError(proposal_id)
        return proposal.model_copy(deep=True)

    def list_proposals(self, status: Optional[ProposalStatus] = None) -> List[MultiSigProposal]:
        """Get all proposals (optionally filtered by status)."""
        return [
            p.model_copy(deep=True)
            for p in self._proposals.values()
            if status is None or p.status == status
        ]

    async def _lookup(self, proposal_id: str):
        async with self._registry_lock:
            proposal = self._proposals.get(proposal_id)
            if proposal is None:
                raise NotFoundError(proposal_id)
            return proposal, self._locks[proposal_id]

    def _check_floor(self, proposal_id: str, balance: float, amount: float) -> None:
        if balance - amount < self.config.balance_floor:
            raise FloorBreachError(proposal_id, balance, amount, self.config.balance_floor)

    @staticmethod
    def _check_can_sign(proposal: MultiSigProposal, signer_id: str) -> None:
        if proposal.status not in SIGNING_STATUSES:
            raise InvalidStateError(proposal.proposal_id, proposal.status.value, "co-sign")
        if signer_id not in proposal.authorized_signers:
            raise UnauthorizedSignerError(proposal.proposal_id, signer_id)

    @staticmethod
    def _co_sign_result(proposal: MultiSigProposal, newly_signed: bool) -> CoSignResult:
        return CoSignResult(
            proposal=proposal.model_copy(deep=True),
            approved=proposal.status == ProposalStatus.APPROVED,
            newly_signed=newly_signed,
        )
