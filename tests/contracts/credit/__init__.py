"""
Credit Service Contracts

This module provides the contracts for credit_service testing.
"""

from .data_contract import (
    CreditTestDataFactory,
    CustomerDocumentBuilder,
)

__all__ = [
    "CreditTestDataFactory",
    "CustomerDocumentBuilder",
]
