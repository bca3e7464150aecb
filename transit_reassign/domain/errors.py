"""
Reassignment domain errors.

Eligibility failures and validation problems are returned as data, never raised.
Only staging misuse, commit conflicts (inside the transaction) and store failures raise.
"""

from typing import List, Optional

from transit_reassign.domain.models import ConflictDetail


class ReassignmentError(Exception):
    """Base class for reassignment errors."""


class StagingError(ReassignmentError, ValueError):
    pass


class EntityLockedError(StagingError):
    def __init__(self, entity_id: str):
        super().__init__(f"Entity {entity_id} is locked and cannot be staged")
        self.entity_id = entity_id


class UnknownEntityError(StagingError):
    def __init__(self, entity_id: str):
        super().__init__(f"Entity {entity_id} not found in snapshot")
        self.entity_id = entity_id


class CommitConflictError(ReassignmentError):
    """Optimistic-concurrency failure detected inside the transaction. Aborts it."""

    def __init__(self, conflicts: List[ConflictDetail]):
        self.conflicts = list(conflicts)
        super().__init__("; ".join(c.message for c in self.conflicts) or "commit conflict")


class RevertBlockedError(ReassignmentError):
    """Revert refused because a source container filled up in the meantime."""

    def __init__(self, token_id: str, conflicts: Optional[List[ConflictDetail]] = None):
        self.token_id = token_id
        self.conflicts = list(conflicts or [])
        detail = "; ".join(c.message for c in self.conflicts)
        super().__init__(
            f"Revert {token_id} blocked: free space before reverting" + (f" ({detail})" if detail else "")
        )


class StoreError(ReassignmentError):
    """I/O failure in the persistent store. No local recovery."""
