"""
Shared primitive types for jobledger.

Identities are opaque, comparable tokens (account addresses in practice).
Logical time is a monotonically non-decreasing integer supplied by the host
on every call (block height, sequence number, ...); the ledger never reads a
clock of its own.
"""

from typing import Tuple

Identity = str
LogicalTime = int
JobId = int

# Reserved identity that can never act (job creation caller, admin target).
NULL_IDENTITY: Identity = "SP000000000000000000002Q6VF78"

MIN_MILESTONES = 1
MAX_MILESTONES = 5

# Applications are keyed by (job id, freelancer identity).
ApplicationKey = Tuple[JobId, Identity]
