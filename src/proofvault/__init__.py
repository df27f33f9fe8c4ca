"""proofvault - canonical proof hashing, vaulting and blockchain anchoring."""

from .version import __version__

__all__ = ["__version__"]
