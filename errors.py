class TreeError(ValueError):
    """
    base class for binary tree rule violations.
    subclasses ValueError so callers that only know about
    business-rule ValueErrors keep working.

    retryable errors are worth running the whole operation again from a
    fresh read; the service retry loops key off this flag.
    """

    retryable = False


class SponsorNotFound(TreeError):
    def __init__(self, sponsor_id):
        super().__init__(f"Sponsor {sponsor_id} not found")
        self.sponsor_id = sponsor_id


class ParentNotFound(TreeError):
    def __init__(self, parent_id):
        super().__init__(f"Parent {parent_id} not found")
        self.parent_id = parent_id


class BuyerNotFound(TreeError):
    def __init__(self, buyer_id):
        super().__init__(f"Buyer {buyer_id} not found")
        self.buyer_id = buyer_id


class MemberNotFound(TreeError):
    def __init__(self, member_id):
        super().__init__(f"Member {member_id} not found")
        self.member_id = member_id


class SlotOccupied(TreeError):
    def __init__(self, parent_id, position):
        super().__init__(f"{position} slot under {parent_id} is already occupied")
        self.parent_id = parent_id
        self.position = position


class RootExists(TreeError):
    def __init__(self, root_id=None):
        super().__init__(f"Tree already has a root ({root_id})")
        self.root_id = root_id


class MemberAlreadyPlaced(TreeError):
    def __init__(self, member_id):
        super().__init__(f"Member {member_id} is already placed in the tree")
        self.member_id = member_id


class TreeIntegrityError(TreeError):
    """
    stored tree is inconsistent (cycle, non-root node without a side, ...).
    not the caller's fault.
    """


class CycleDetected(TreeIntegrityError):
    def __init__(self, start_id, max_depth):
        super().__init__(
            f"Walk from {start_id} exceeded {max_depth} steps; the tree contains a cycle"
        )
        self.start_id = start_id
        self.max_depth = max_depth


class ConcurrentPlacementConflict(TreeError):
    """
    the slot we resolved was filled by another writer before we inserted.
    safe to retry with a fresh resolve.
    """

    retryable = True

    def __init__(self, parent_id, position):
        super().__init__(
            f"{position} slot under {parent_id} was taken by a concurrent placement"
        )
        self.parent_id = parent_id
        self.position = position


class TransactionConflict(TreeError):
    """
    the database aborted our transaction (deadlock, serialization failure).
    nothing was written; safe to retry.
    """

    retryable = True


class InvalidPlacementRequest(TreeError):
    pass


class InvalidBVAmount(TreeError):
    pass


class InvalidTreeQuery(TreeError):
    pass
