"""
Collaborator contracts consumed by the core.

Wallet custody, signing, ledger submission and inference backends live outside
this package; anything satisfying these protocols can be plugged in. The
in-memory implementations in agent_wallets.wallet.simulated are one example.
"""
from typing import Optional, Protocol, Sequence, runtime_checkable

from .wallet.schemas import TransferIntent, SignedIntent, SignedTransfer


@runtime_checkable
class WalletHandle(Protocol):
    """An agent's wallet. Raises TransferError / BroadcastError on failure."""

    def identifier(self) -> str: ...

    async def get_balance(self) -> float: ...

    async def transfer(self, destination: str, amount: float) -> str: ...

    async def partial_sign(self, intent: TransferIntent) -> SignedIntent: ...

    async def broadcast(self, signed: SignedTransfer) -> str: ...


class WalletProvider(Protocol):
    """Resolves or creates the wallet owned by an agent."""

    async def get_or_create(self, agent_id: str) -> WalletHandle: ...


class ProtocolClient(Protocol):
    """Value-moving protocol operations (trade, yield, pool rebalance)."""

    async def execute_trade(self, from_wallet: WalletHandle, to_identifier: str, amount: float) -> str: ...

    async def simulate_yield(self, wallet: WalletHandle, amount: float) -> Optional[str]: ...

    async def rebalance_pool(self, wallets: Sequence[WalletHandle], target_balance: float) -> None: ...


class InferenceClient(Protocol):
    """External reasoning collaborator: snapshot JSON in, decision JSON text out."""

    async def infer(self, snapshot_json: str) -> str: ...
