"""
StakeGuard Governance

Provides:
  - VoteChoice / VoterRecord / VoteReceipt / VoteTally / VotingModel  (voting.py)
"""

from .voting import (
    VoteChoice,
    VoteReceipt,
    VoterRecord,
    VoteTally,
    VotingModel,
)

__all__ = [
    "VoteChoice",
    "VoteReceipt",
    "VoterRecord",
    "VoteTally",
    "VotingModel",
]
