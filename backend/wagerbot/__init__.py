"""Wagerbot: custodial betting bot for an on-chain price prediction market."""

__version__ = "0.1.0"
__author__ = "Wagerbot Team"

__all__ = ["__version__", "__author__"]
