"""
Pydantic schemas for transfer intents and multi-sig proposals.
"""
import json
import uuid
from enum import Enum
from typing import Optional, List, Dict
from datetime import datetime
from pydantic import BaseModel, Field


class TransferIntent(BaseModel):
    """An unsigned transfer: what co-signers actually approve."""
    intent_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    source: str = Field(description="Identifier of the wallet the funds leave")
    destination: str
    amount: float = Field(gt=0)
    memo: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def canonical_bytes(self) -> bytes:
        """Stable byte encoding used as the signing payload."""
        payload = self.model_dump(mode="json")
        return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


class SignedIntent(BaseModel):
    """One signer's partial signature over a TransferIntent."""
    intent_id: str
    signer_id: str
    signature: str


class SignedTransfer(BaseModel):
    """A fully co-signed transfer ready for broadcast."""
    intent: TransferIntent
    signatures: Dict[str, str] = Field(default_factory=dict)


class ProposalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    EXECUTED = "EXECUTED"
    REJECTED = "REJECTED"


class MultiSigProposal(BaseModel):
    """
    A transfer awaiting M-of-N approval.

    Status only moves forward: PENDING -> APPROVED -> EXECUTED, or
    PENDING -> REJECTED. Signatures only grow; a signer appears at most once.
    """
    proposal_id: str
    proposer_id: str
    description: str
    intent: TransferIntent
    required_signers: int = Field(ge=1)
    authorized_signers: List[str]
    signatures: Dict[str, str] = Field(default_factory=dict)
    status: ProposalStatus = ProposalStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.utcnow)
    executed_at: Optional[datetime] = None
    execution_result: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    @property
    def signature_count(self) -> int:
        return len(self.signatures)

    @property
    def threshold_met(self) -> bool:
        return self.signature_count >= self.required_signers

    @property
    def signed_by(self) -> List[str]:
        return list(self.signatures.keys())


class CoSignResult(BaseModel):
    """Returned by co_sign whether or not the signature was new."""
    proposal: MultiSigProposal
    approved: bool
    newly_signed: bool
