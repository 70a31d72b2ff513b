"""
Inference collaborators for InferenceDecisionSource.

Each client takes the snapshot JSON and returns the raw response text. They
raise on any failure; the decision source turns every failure into a
rule-based fallback.
"""
import logging
from typing import Optional

import httpx
from openai import AsyncOpenAI

from ..config import AgentConfig, InferenceBackend
from ..errors import InferenceError
from ..interfaces import InferenceClient

logger = logging.getLogger("agent_wallets.agents.inference")


def build_system_prompt(config: AgentConfig) -> str:
    return f"""You are an autonomous agent managing a wallet shared with peer agents.
Your goal is to grow your balance, keep liquidity, and trade with peers.

You will receive a JSON snapshot of your current state.
RESPOND WITH VALID JSON ONLY, in this exact format:
{{
  "action": "IDLE" | "TRADE" | "YIELD" | "REBAL",
  "reason": "<one sentence explaining your decision>",
  "target": "<peerId of the peer to trade with, or null>",
  "amount": <amount as float, or null>
}}

HARD RULES:
1. IDLE: do nothing this cycle.
2. TRADE: transfer to a peer; requires target (one of the peers' peerId) and amount.
3. YIELD: claim simulated yield.
4. REBAL: rebalance the pool across all agents. Use sparingly.
5. Never trade more than {config.max_trade_per_tx} in a single transaction.
6. Never trade if your balance would drop below {config.balance_floor}.
7. Prefer IDLE when your balance is low.

Every decision is validated by a deterministic safety layer; out-of-bounds
decisions are clamped or turned into IDLE."""


class OpenAIInferenceClient:
    """Chat-completions backed reasoning collaborator."""

    def __init__(self, config: AgentConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        self.model = config.inference_model
        self.system_prompt = build_system_prompt(config)
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.config.openai_api_key:
                raise InferenceError("OPENAI_API_KEY not set")
            self._client = AsyncOpenAI(api_key=self.config.openai_api_key)
        return self._client

    async def infer(self, snapshot_json: str) -> str:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.system_prompt},
                {
                    "role": "user",
                    "content": f"Current agent state:\n{snapshot_json}\n\nWhat action should I take this cycle?",
                },
            ],
            temperature=0.3,
            max_tokens=256,
        )
        raw_content = response.choices[0].message.content if response.choices else None
        if raw_content is None:
            raise InferenceError("Empty LLM response")
        return raw_content.strip()


class HTTPInferenceClient:
    """Generic HTTP reasoning endpoint: POST snapshot JSON, read decision JSON."""

    def __init__(self, config: AgentConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.url = config.inference_url
        self._client = client

    def _headers(self) -> dict:
        headers = {"content-type": "application/json"}
        if self.config.inference_api_key:
            headers["authorization"] = f"Bearer {self.config.inference_api_key}"
        return headers

    async def infer(self, snapshot_json: str) -> str:
        if not self.url:
            raise InferenceError("INFERENCE_URL not set")

        if self._client is not None:
            response = await self._client.post(self.url, content=snapshot_json, headers=self._headers())
        else:
            async with httpx.AsyncClient(timeout=self.config.inference_timeout_seconds) as client:
                response = await client.post(self.url, content=snapshot_json, headers=self._headers())

        response.raise_for_status()
        return response.text


def build_inference_client(config: AgentConfig) -> Optional[InferenceClient]:
    """Pick the configured backend; None means every cycle falls back to rules."""
    if config.inference_backend == InferenceBackend.HTTP:
        if not config.inference_url:
            logger.warning("INFERENCE_URL not set - inference source will use rule-based fallback")
            return None
        return HTTPInferenceClient(config)

    if not config.openai_api_key:
        logger.warning("OPENAI_API_KEY not set - inference source will use rule-based fallback")
        return None
    return OpenAIInferenceClient(config)
