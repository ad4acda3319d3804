"""The Compact filler package."""

from .filler import CompactFiller, create, create_poller, default_metadata, lock_token

__all__ = ["CompactFiller", "create", "create_poller", "default_metadata", "lock_token"]
