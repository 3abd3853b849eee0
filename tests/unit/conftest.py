"""
Unit Test Layer Configuration

Structure:
    tests/unit/
    ├── core/        Shared infrastructure (config, event envelope)
    └── credit/      Pure credit logic (diff engines, balance math, models)

Usage:
    pytest tests/unit -v
    pytest tests/unit -m unit -v
"""
import os
import sys

import pytest

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
