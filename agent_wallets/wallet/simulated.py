"""
In-memory ledger, wallets and protocol.

Lets the orchestrators, the multi-sig coordinator and the harness run without
a chain. Signatures are HMAC-SHA256 over the canonical intent bytes with a
per-wallet secret; they prove which in-process wallet signed, nothing more.
"""
import asyncio
import hashlib
import hmac
import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .schemas import SignedIntent, SignedTransfer, TransferIntent
from ..errors import BroadcastError, TransferError
from ..interfaces import WalletHandle

logger = logging.getLogger("agent_wallets.wallet.simulated")

AMOUNT_DECIMALS = 6


def _receipt(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


class InMemoryLedger:
    """Balances keyed by wallet identifier. All mutations hold one lock."""

    def __init__(self):
        self._balances: Dict[str, float] = {}
        self._secrets: Dict[str, bytes] = {}
        self.receipts: List[dict] = []
        self._lock = asyncio.Lock()

    def open_account(self, identifier: str, balance: float = 0.0, secret: Optional[bytes] = None) -> bytes:
        if identifier in self._balances:
            raise TransferError(f"account {identifier} already exists")
        self._balances[identifier] = round(balance, AMOUNT_DECIMALS)
        self._secrets[identifier] = secret or secrets.token_bytes(32)
        return self._secrets[identifier]

    def has_account(self, identifier: str) -> bool:
        return identifier in self._balances

    def balance_of(self, identifier: str) -> float:
        if identifier not in self._balances:
            raise TransferError(f"unknown account {identifier}")
        return self._balances[identifier]

    def total_supply(self) -> float:
        return round(sum(self._balances.values()), AMOUNT_DECIMALS)

    def verify(self, signer_id: str, payload: bytes, signature: str) -> bool:
        secret = self._secrets.get(signer_id)
        if secret is None:
            return False
        expected = hmac.new(secret, payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    async def transfer(self, source: str, destination: str, amount: float, kind: str = "transfer") -> str:
        """Move funds between two accounts and return a receipt id."""
        if amount <= 0:
            raise TransferError(f"transfer amount must be positive, got {amount}")
        async with self._lock:
            if source not in self._balances:
                raise TransferError(f"unknown source account {source}")
            if destination not in self._balances:
                raise TransferError(f"unknown destination account {destination}")
            if self._balances[source] < amount:
                raise TransferError(
                    f"insufficient funds in {source}: {self._balances[source]:.6f} < {amount:.6f}"
                )
            self._balances[source] = round(self._balances[source] - amount, AMOUNT_DECIMALS)
            self._balances[destination] = round(self._balances[destination] + amount, AMOUNT_DECIMALS)
            receipt = _receipt(kind)
            self.receipts.append({
                "receipt": receipt,
                "kind": kind,
                "source": source,
                "destination": destination,
                "amount": amount,
            })
        return receipt

    async def credit(self, identifier: str, amount: float, kind: str = "yield") -> str:
        async with self._lock:
            if identifier not in self._balances:
                raise TransferError(f"unknown account {identifier}")
            self._balances[identifier] = round(self._balances[identifier] + amount, AMOUNT_DECIMALS)
            receipt = _receipt(kind)
            self.receipts.append({
                "receipt": receipt,
                "kind": kind,
                "source": None,
                "destination": identifier,
                "amount": amount,
            })
        return receipt


class InMemoryWallet:
    """WalletHandle backed by an InMemoryLedger account."""

    def __init__(self, agent_id: str, ledger: InMemoryLedger, secret: bytes):
        self.agent_id = agent_id
        self._ledger = ledger
        self._secret = secret

    def identifier(self) -> str:
        return self.agent_id

    async def get_balance(self) -> float:
        return self._ledger.balance_of(self.agent_id)

    async def transfer(self, destination: str, amount: float) -> str:
        return await self._ledger.transfer(self.agent_id, destination, round(amount, AMOUNT_DECIMALS))

    async def partial_sign(self, intent: TransferIntent) -> SignedIntent:
        signature = hmac.new(self._secret, intent.canonical_bytes(), hashlib.sha256).hexdigest()
        return SignedIntent(intent_id=intent.intent_id, signer_id=self.agent_id, signature=signature)

    async def broadcast(self, signed: SignedTransfer) -> str:
        """Verify every signature, then settle intent.source -> intent.destination."""
        intent = signed.intent
        payload = intent.canonical_bytes()
        if intent.source not in signed.signatures:
            raise BroadcastError(f"intent {intent.intent_id} is missing the source's signature")
        for signer_id, signature in signed.signatures.items():
            if not self._ledger.verify(signer_id, payload, signature):
                raise BroadcastError(f"bad signature from {signer_id} on intent {intent.intent_id}")
        try:
            return await self._ledger.transfer(intent.source, intent.destination, intent.amount, kind="multisig")
        except TransferError as e:
            raise BroadcastError(str(e)) from e

    def __repr__(self) -> str:
        return f"InMemoryWallet({self.agent_id!r})"


class InMemoryWalletProvider:
    """WalletProvider that opens funded ledger accounts on first use."""

    def __init__(self, ledger: Optional[InMemoryLedger] = None, initial_balance: float = 1.0):
        self.ledger = ledger or InMemoryLedger()
        self.initial_balance = initial_balance
        self._wallets: Dict[str, InMemoryWallet] = {}

    async def get_or_create(self, agent_id: str) -> InMemoryWallet:
        wallet = self._wallets.get(agent_id)
        if wallet is None:
            secret = self.ledger.open_account(agent_id, self.initial_balance)
            wallet = InMemoryWallet(agent_id, self.ledger, secret)
            self._wallets[agent_id] = wallet
            logger.info(f"Wallet created for {agent_id} with balance {self.initial_balance}")
        return wallet


@dataclass
class RebalanceTransfer:
    source: str
    destination: str
    amount: float


def plan_rebalance(
    balances: Dict[str, float],
    target: float,
    tolerance: float = 0.002,
    reserve: float = 0.001,
) -> List[RebalanceTransfer]:
    """
    Greedy donor -> receiver plan moving each wallet toward `target`.

    Donors are wallets more than `tolerance` above target, receivers more than
    `tolerance` below. Each receiver is filled from donors in order; a donor
    keeps `reserve` above target. Not guaranteed to use the fewest transfers.
    """
    remaining = dict(balances)
    donors = [k for k, v in balances.items() if v > target + tolerance]
    receivers = [k for k, v in balances.items() if v < target - tolerance]

    plan = []
    for receiver in receivers:
        needed = target - remaining[receiver]
        for donor in donors:
            if needed <= 0:
                break
            available = remaining[donor] - target - reserve
            if available <= 0:
                continue
            send = round(min(needed, available), AMOUNT_DECIMALS)
            if send <= 0:
                continue
            plan.append(RebalanceTransfer(source=donor, destination=receiver, amount=send))
            remaining[donor] -= send
            remaining[receiver] += send
            needed -= send
    return plan


class SimulatedProtocol:
    """ProtocolClient over an InMemoryLedger."""

    def __init__(self, ledger: InMemoryLedger):
        self.ledger = ledger

    async def execute_trade(self, from_wallet: WalletHandle, to_identifier: str, amount: float) -> str:
        logger.info(f"Protocol: trade {amount} {from_wallet.identifier()} -> {to_identifier}")
        return await from_wallet.transfer(to_identifier, amount)

    async def simulate_yield(self, wallet: WalletHandle, amount: float) -> Optional[str]:
        logger.info(f"[{wallet.identifier()}] simulating yield: {amount}")
        return await self.ledger.credit(wallet.identifier(), round(amount, AMOUNT_DECIMALS))

    async def rebalance_pool(self, wallets: Sequence[WalletHandle], target_balance: float) -> None:
        logger.info(f"Protocol: rebalancing {len(wallets)} wallets to {target_balance:.4f} each")
        by_id = {w.identifier(): w for w in wallets}
        balances = await asyncio.gather(*(w.get_balance() for w in wallets))
        plan = plan_rebalance(dict(zip(by_id, balances)), target_balance)

        for step in plan:
            try:
                await by_id[step.source].transfer(step.destination, step.amount)
                logger.info(f"Rebalance: sent {step.amount:.4f} {step.source} -> {step.destination}")
            except TransferError as e:
                logger.warning(f"Rebalance transfer failed: {e}")
