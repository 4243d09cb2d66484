"""Multi-language smart contract and systems code auditor."""

__version__ = "0.1.0"
