"""Eco protocol filler package."""

from .filler import EcoFiller, create, decode_transfer

__all__ = ["EcoFiller", "create", "decode_transfer"]
