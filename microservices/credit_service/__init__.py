"""
Credit Service

Per-user credit ledger for the isA platform.

Features:
- Gift credits (monthly allowance) and paid credits (one-off purchases)
- Atomic, per-user serialized consumption, gift credits first
- Entitlement and purchase diffing over mirrored customer records
- Monthly gift refresh for active subscribers
- Event-driven integration over NATS JetStream
"""

__version__ = "1.0.0"
