"""
Wallet layer: transfer intents, the multi-sig coordinator and in-memory
stand-ins for custody, ledger and protocol.
"""
