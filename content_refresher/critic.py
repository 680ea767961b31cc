# content_refresher/critic.py

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .generation import generate_json
from .models import Grade
from .sanitizer import sanitize

logger = logging.getLogger(__name__)

PASS_SCORE = 90
MAX_REPAIRS = 1
# a repair shorter than this share of the draft is treated as truncated
MIN_REPAIR_RATIO = 0.5


class CriticState(str, Enum):
    DRAFT = "draft"
    GRADED = "graded"
    ACCEPTED = "accepted"
    REPAIRED = "repaired"


@dataclass
class CriticOutcome:
    html: str
    state: CriticState
    grades: List[Grade] = field(default_factory=list)
    repairs: int = 0
    error: Optional[str] = None


async def grade_content(generator, html: str) -> Grade:
    data = await generate_json(generator, "content_grader", [html])
    if not isinstance(data, dict):
        data = {}
    try:
        score = int(float(data.get("score", 0)))
    except (TypeError, ValueError):
        score = 0
    issues = data.get("issues") or []
    if not isinstance(issues, list):
        issues = [str(issues)]
    return Grade(score=score, issues=[str(i) for i in issues])


async def critic_loop(
    html: str,
    generator,
    *,
    pass_score: int = PASS_SCORE,
    max_repairs: int = MAX_REPAIRS,
    min_repair_ratio: float = MIN_REPAIR_RATIO,
) -> CriticOutcome:
    """
    Grade the draft; below ``pass_score`` ask for one repair and keep it unless it
    looks truncated. Any failure ends the loop with the best draft so far. The
    result is not guaranteed to pass the grade.
    """
    outcome = CriticOutcome(html=html, state=CriticState.DRAFT)
    while outcome.repairs < max_repairs:
        try:
            grade = await grade_content(generator, outcome.html)
            outcome.grades.append(grade)
            outcome.state = CriticState.GRADED
            if grade.score >= pass_score:
                outcome.state = CriticState.ACCEPTED
                logger.info("Critic: score %d, draft accepted", grade.score)
                break

            raw = await generator.generate("content_repair_agent", [outcome.html, grade.issues], "html")
            repaired = sanitize(raw)
            outcome.repairs += 1
            if len(repaired) >= len(outcome.html) * min_repair_ratio:
                outcome.html = repaired
                outcome.state = CriticState.REPAIRED
                logger.info("Critic: score %d, repair applied (%d issue(s))", grade.score, len(grade.issues))
            else:
                logger.warning(
                    "Critic: repair discarded (%d chars vs %d draft)", len(repaired), len(outcome.html)
                )
        except Exception as e:
            outcome.error = str(e)
            logger.warning("Critic loop stopped: %s", e)
            break
    return outcome
