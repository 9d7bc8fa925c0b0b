"""Utility modules for the cost-control kernel."""

from costcontrol_kernel.utils.hashing import canonicalize_json, hash_payload

__all__ = ["canonicalize_json", "hash_payload"]
