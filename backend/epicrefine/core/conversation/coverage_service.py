# backend/epicrefine/core/conversation/coverage_service.py
"""
Coverage scoring for conversational analyses.

Completeness is derived from how many USER messages address each of four
weighted categories, relative to the total number of USER messages:

    coverage(c) = min(100, count(c) / max(1, total_user * weight(c)) * 100)
    overall     = round_half_up(mean of the four coverages)

The query path (one grouped count) is the canonical computation. The
in-memory path exists for callers that already hold the raw message list and
must produce exactly the same report.
"""

import logging
import math
from typing import Dict, Iterable, Optional

from ..models.conversation_models import CoverageReport, MessageRecord, MessageRole, QuestionCategory
from .errors import ConversationError
from .repository import AnalysisRepository, SqlAlchemyAnalysisRepository

logger = logging.getLogger("epicrefine.conversation.coverage_service")

WEIGHTED_CATEGORIES: Dict[QuestionCategory, float] = {
    QuestionCategory.FUNCTIONAL_REQUIREMENTS: 0.30,
    QuestionCategory.NON_FUNCTIONAL_REQUIREMENTS: 0.20,
    QuestionCategory.BUSINESS_RULES: 0.25,
    QuestionCategory.ACCEPTANCE_CRITERIA: 0.25,
}


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (round() is banker's rounding)."""
    return int(math.floor(value + 0.5))


def score_counts(total_user: int, counts: Dict[QuestionCategory, int]) -> CoverageReport:
    """Build a coverage report from USER message counts."""
    if total_user <= 0:
        return CoverageReport.empty()

    coverages: Dict[QuestionCategory, float] = {}
    for category, weight in WEIGHTED_CATEGORIES.items():
        count = counts.get(category, 0)
        coverages[category] = min(100.0, count / max(1.0, total_user * weight) * 100)

    mean = sum(coverages.values()) / len(coverages)

    return CoverageReport(
        overall_score=min(100, round_half_up(mean)),
        functional_coverage=round_half_up(coverages[QuestionCategory.FUNCTIONAL_REQUIREMENTS]),
        non_functional_coverage=round_half_up(coverages[QuestionCategory.NON_FUNCTIONAL_REQUIREMENTS]),
        business_rules_coverage=round_half_up(coverages[QuestionCategory.BUSINESS_RULES]),
        acceptance_criteria_coverage=round_half_up(coverages[QuestionCategory.ACCEPTANCE_CRITERIA]),
    )


class CoverageService:
    """
    Computes CoverageReports for analyses.

    Never raises: a failed count query is logged and yields an all-zero
    report, the same as an analysis with no answers yet.
    """

    def __init__(self, repository: Optional[AnalysisRepository] = None):
        self._repository = repository or SqlAlchemyAnalysisRepository()

    async def calculate(self, analysis_id: str) -> CoverageReport:
        """Canonical coverage from a grouped count over stored USER messages."""
        try:
            total_user, counts = await self._repository.count_user_messages_by_category(analysis_id)
        except ConversationError as e:
            logger.warning(f"Coverage query failed for analysis {analysis_id}, reporting zero: {e}")
            return CoverageReport.empty()

        return score_counts(total_user, counts)

    def calculate_from_messages(self, messages: Iterable[MessageRecord]) -> CoverageReport:
        """
        Coverage from an already loaded message list.

        Pass the raw stored messages, not the reconciled view, so the counts
        match the query path.
        """
        total_user = 0
        counts: Dict[QuestionCategory, int] = {}
        for message in messages:
            if message.role != MessageRole.USER:
                continue
            total_user += 1
            if message.category is not None:
                counts[message.category] = counts.get(message.category, 0) + 1

        return score_counts(total_user, counts)
