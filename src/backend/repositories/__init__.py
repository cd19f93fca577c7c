"""Repository modules for database access."""

from repositories.points_repository import PointsRepository
from repositories.poll_repository import PollRepository
from repositories.user_repository import UserRepository
from repositories.vote_repository import VoteRepository

__all__ = [
    "PointsRepository",
    "PollRepository",
    "VoteRepository",
    "UserRepository",
]
