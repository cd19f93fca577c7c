"""Database models module."""

from models.distributed_lock import DistributedLock
from models.points_history import PointsHistory, PointsType
from models.poll import ELECTION_PENDING, BallotMode, BallotPrivacy, Poll, PollOption, PollStatus
from models.user import User
from models.vote import ConfidenceLevel, Vote

__all__ = [
    "BallotMode",
    "BallotPrivacy",
    "ConfidenceLevel",
    "DistributedLock",
    "ELECTION_PENDING",
    "PointsHistory",
    "PointsType",
    "Poll",
    "PollOption",
    "PollStatus",
    "User",
    "Vote",
]
