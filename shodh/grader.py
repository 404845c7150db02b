import random
from dataclasses import dataclass
from typing import List, Optional, Protocol

from shodh.models import SubmissionStatus, TestCase

ACCEPTED_OUTPUT = "All test cases passed!"
WRONG_ANSWER_OUTPUT = "Test case 1 failed: Expected output doesn't match"


@dataclass
class Verdict:
    status: SubmissionStatus
    output: str

    @property
    def accepted(self) -> bool:
        return self.status == SubmissionStatus.ACCEPTED

    def score_for(self, max_score: int) -> int:
        return max_score if self.accepted else 0


class Grader(Protocol):
    def grade(self, code: str, language: str, test_cases: List[TestCase]) -> Verdict:
        ...


class RandomGrader:
    """
    Stand-in for a real judge: nothing is executed, the verdict is a
    coin flip that comes up Accepted with probability `acceptance_rate`.
    """

    def __init__(self, acceptance_rate: float = 0.7, rng: Optional[random.Random] = None):
        if not 0.0 <= acceptance_rate <= 1.0:
            raise ValueError("acceptance_rate must be within [0, 1]")
        self.acceptance_rate = acceptance_rate
        self.rng = rng or random.Random()

    def grade(self, code: str, language: str, test_cases: List[TestCase]) -> Verdict:
        if self.rng.random() < self.acceptance_rate:
            return Verdict(SubmissionStatus.ACCEPTED, ACCEPTED_OUTPUT)
        return Verdict(SubmissionStatus.WRONG_ANSWER, WRONG_ANSWER_OUTPUT)
