"""
Ranking Engine Module

Read-only standings over student balances. Ranks use competition ranking:
a student's rank is one plus the number of students in scope with strictly
more points, so equal balances share a rank. Ordered listings break ties by
student id so the same data always produces the same order.
"""

from dataclasses import dataclass
from typing import List, Optional

from .authorization import Operation, Principal, require_role
from .directory import Participant, ParticipantDirectory
from .errors import NotFoundError


@dataclass
class RankResult:
    """A student's position within a population"""
    rank: int
    total_students: int
    points: int


@dataclass
class LeaderboardEntry:
    rank: int
    student_id: str
    username: str
    first_name: str
    last_name: str
    points: int
    tutor_id: Optional[str] = None


@dataclass
class Leaderboard:
    """Top entries plus the caller's own standing"""
    entries: List[LeaderboardEntry]
    total_students: int
    user_rank: Optional[RankResult] = None


class RankingEngine:
    """Competition ranking over the participant directory"""

    def __init__(self, directory: ParticipantDirectory, max_limit: int = 100):
        self.directory = directory
        self.max_limit = max_limit

    def rank(self, student_id: str, tutor_id: Optional[str] = None) -> RankResult:
        """
        Rank of one student among all students, or among one tutor's students

        Raises:
            NotFoundError: If the student does not exist, or is outside the
                requested tutor group
        """
        student = self.directory.get_student(student_id)
        population = self.directory.list_students(tutor_id=tutor_id)
        if tutor_id and student.tutor_id != tutor_id:
            raise NotFoundError("Student not found or not assigned to this tutor")

        higher = sum(1 for s in population if s.points > student.points)
        return RankResult(rank=higher + 1, total_students=len(population), points=student.points)

    def top_n(self, n: int, tutor_id: Optional[str] = None) -> List[LeaderboardEntry]:
        """Highest balances first, ties ordered by student id"""
        if n <= 0:
            return []

        students = self._ordered(self.directory.list_students(tutor_id=tutor_id))
        entries = []
        rank = 0
        previous_points = None
        for position, student in enumerate(students[:n], start=1):
            if student.points != previous_points:
                rank = position
                previous_points = student.points
            entries.append(self._entry(student, rank))
        return entries

    def leaderboard(self, actor: Principal, limit: int = 25,
                    tutor_id: Optional[str] = None) -> Leaderboard:
        """
        Leaderboard as shown to a participant

        Students get their own rank alongside the top entries. ``tutor_id``
        narrows the board to one tutor's students.
        """
        require_role(actor, Operation.VIEW_LEADERBOARD)
        limit = min(max(int(limit), 1), self.max_limit)

        population = self.directory.list_students(tutor_id=tutor_id)
        user_rank = None
        if actor.is_student and (tutor_id is None or actor.tutor_id == tutor_id):
            user_rank = self.rank(actor.id, tutor_id=tutor_id)

        return Leaderboard(
            entries=self.top_n(limit, tutor_id=tutor_id),
            total_students=len(population),
            user_rank=user_rank
        )

    @staticmethod
    def _ordered(students: List[Participant]) -> List[Participant]:
        return sorted(students, key=lambda s: (-s.points, s.id))

    @staticmethod
    def _entry(student: Participant, rank: int) -> LeaderboardEntry:
        return LeaderboardEntry(
            rank=rank,
            student_id=student.id,
            username=student.username,
            first_name=student.first_name,
            last_name=student.last_name,
            points=student.points,
            tutor_id=student.tutor_id
        )
