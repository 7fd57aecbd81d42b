"""
Approval Kernel

The server-side state machine for report approval:
- Sequential and weighted multi-step review
- Delegation, escalation and returns
- Append-only, hash-chained status history
- Per-workflow linearizable transitions
"""

__version__ = "0.1.0"
