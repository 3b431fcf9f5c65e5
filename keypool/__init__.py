"""
KeyPool - Source Package

Credential pool and failover execution engine that sits in front of
calls to a generative-AI provider for a personal productivity app.

DESIGN PRINCIPLES:
1. Secrets are encrypted at rest and decrypted only at call time
2. A key is admitted only after a live probe passes
3. Per-key failures are absorbed; callers see one outcome
4. Every state transition is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "KeyPool Team"
