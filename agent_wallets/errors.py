"""
Error taxonomy for agent wallets.

Recoverable errors (inference, transfer, broadcast) are handled inside a
decision cycle. Proposal errors name a precise precondition violation and are
always propagated to the caller.
"""
from typing import Optional


class AgentWalletError(Exception):
    """Base class for all agent wallet errors."""


class InitializationError(AgentWalletError):
    """Raised when an orchestrator cannot obtain its wallet handle."""

    def __init__(self, agent_id: str, reason: str):
        self.agent_id = agent_id
        self.reason = reason
        super().__init__(f"[{agent_id}] initialization failed: {reason}")


class InferenceError(AgentWalletError):
    """Raised by inference collaborators; always recovered by falling back to rules."""


class TransferError(AgentWalletError):
    """Raised by a wallet when a transfer cannot be performed."""


class BroadcastError(AgentWalletError):
    """Raised by a wallet when a signed transfer cannot be broadcast."""


class ProposalError(AgentWalletError):
    """Base class for multi-sig proposal lifecycle errors."""

    def __init__(self, proposal_id: str, message: str):
        self.proposal_id = proposal_id
        super().__init__(message)


class NotFoundError(ProposalError):
    def __init__(self, proposal_id: str):
        super().__init__(proposal_id, f"Proposal {proposal_id} not found")


class InvalidStateError(ProposalError):
    def __init__(self, proposal_id: str, status: str, operation: str):
        self.status = status
        self.operation = operation
        super().__init__(
            proposal_id,
            f"Cannot {operation} proposal {proposal_id}: status is {status}",
        )


class UnauthorizedSignerError(ProposalError):
    def __init__(self, proposal_id: str, signer_id: str):
        self.signer_id = signer_id
        super().__init__(
            proposal_id,
            f"{signer_id} is not an authorized signer for {proposal_id}",
        )


class InvalidThresholdError(ProposalError):
    def __init__(self, required_signers: int, authorized_count: int, proposal_id: str = ""):
        self.required_signers = required_signers
        self.authorized_count = authorized_count
        super().__init__(
            proposal_id,
            f"Invalid threshold {required_signers}-of-{authorized_count}: "
            f"required signers must be between 1 and {authorized_count}",
        )


class InvalidProposalError(ProposalError):
    def __init__(self, reason: str, proposal_id: str = ""):
        self.reason = reason
        super().__init__(proposal_id, f"Invalid proposal: {reason}")


class NotApprovedError(ProposalError):
    def __init__(self, proposal_id: str, signature_count: int, required_signers: int, status: Optional[str] = None):
        self.signature_count = signature_count
        self.required_signers = required_signers
        self.status = status
        super().__init__(
            proposal_id,
            f"Proposal {proposal_id} not approved "
            f"({signature_count}/{required_signers} signatures, status {status})",
        )


class AlreadyExecutedError(ProposalError):
    def __init__(self, proposal_id: str):
        super().__init__(proposal_id, f"Proposal {proposal_id} already executed")


class FloorBreachError(ProposalError):
    def __init__(self, proposal_id: str, balance: float, amount: float, floor: float):
        self.balance = balance
        self.amount = amount
        self.floor = floor
        super().__init__(
            proposal_id,
            f"Proposal {proposal_id or '(new)'} would leave {balance - amount:.6f} "
            f"(balance {balance:.6f} - amount {amount:.6f}), below floor {floor:.6f}",
        )
