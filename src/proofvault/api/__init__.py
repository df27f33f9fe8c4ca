"""HTTP surface of the proof service."""
