"""
Workflow Kernel - sequential approval pipeline for trade-document envelopes.

An envelope's required documents are routed, one legal entity at a time,
through an ordered list of stages with:
- Strict stage ordering (one current stage, forward-only)
- Payment gating before an entity may decide
- Terminal rejection
- Optimistic per-envelope concurrency
- Append-only transition history
"""

__version__ = "0.1.0"
