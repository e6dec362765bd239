"""Greengrass edge device provisioner (Python-first, run-once).

Core design goals:
- Idempotent: an already provisioned device is left untouched
- Atomic status and credential writes
- Ordered, fail-fast installation steps
- Dry mode for controlled environments
- Centralized logging
"""

__all__ = []
