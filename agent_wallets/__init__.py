"""
Agent Wallets - autonomous agents that authorize value-moving actions.

Core pieces:
- agents: decision sources, safety validation, execution and the per-agent orchestrator
- wallet: M-of-N co-signature proposals and the in-memory wallet/protocol simulation
- runtime: the explicit registry wiring everything together for one process
"""

__version__ = "0.1.0"
