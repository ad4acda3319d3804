"""Hyperlane7683 open-order indexing and refunds."""

from .refunder import Hyperlane7683RefundClient, OpenOrderIndexer, decode_status

__all__ = ["Hyperlane7683RefundClient", "OpenOrderIndexer", "decode_status"]
