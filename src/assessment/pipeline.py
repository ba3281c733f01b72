"""Registration assessment pipeline.

Runs once per registration and decides whether it can be auto-approved:

1. Load context (fatal if any row is missing, nothing written yet)
2. Stop unless the journey has auto-approval enabled
3. Stop and ask the owner for manual review unless the crew consented to AI
4. Deterministic pre-checks for the risk and experience requirements the journey has
5. AI scoring per requirement type
6. Weighted aggregate
7. Decision
8. Persist results and registration
9. Notify crew and owner

The policy is fail closed: any pre-check failure, scoring error or missed
required pass mark blocks auto-approval regardless of the aggregate.
"""

from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from shared.config import AssessmentSettings
from shared.logging import get_logger
from shared.models import (
    AssessmentContext,
    AssessmentResult,
    RegistrationAnswer,
    RegistrationStatus,
    Requirement,
    RequirementType,
)
from assessment.aggregation import compute_aggregate, should_auto_approve
from assessment.notifier import Notifier, owner_registration_link
from assessment.prechecks import PrecheckResult, check_experience_level, check_risk_level
from assessment.scorers import RequirementScorer, ScoreBatch, ScoringContext, build_scorers
from assessment.store import AssessmentStore
from gateway.gateway import AIGateway

logger = get_logger(__name__)


class OutcomeStatus(str, Enum):
    AUTO_APPROVAL_DISABLED = "auto_approval_disabled"
    NO_AI_CONSENT = "no_ai_consent"
    AUTO_APPROVED = "auto_approved"
    PENDING_REVIEW = "pending_review"


class AssessmentOutcome(BaseModel):
    """What one pipeline run decided and why."""
    registration_id: str
    status: OutcomeStatus
    aggregate_score: Optional[int] = None
    threshold: Optional[int] = None
    auto_approved: bool = False
    assessment_failed: bool = False
    results: list[AssessmentResult] = Field(default_factory=list)
    reasoning: list[str] = Field(default_factory=list)
    notification_error: Optional[str] = None


Precheck = Callable[[AssessmentContext], PrecheckResult]

PRECHECKS: dict[RequirementType, Precheck] = {
    RequirementType.RISK_LEVEL: lambda ctx: check_risk_level(
        ctx.journey.risk_level, ctx.crew.risk_level
    ),
    RequirementType.EXPERIENCE_LEVEL: lambda ctx: check_experience_level(
        ctx.crew.experience_level,
        ctx.leg.min_experience_level or ctx.journey.min_experience_level,
    ),
}


def group_by_type(requirements: list[Requirement]) -> dict[RequirementType, list[Requirement]]:
    grouped: dict[RequirementType, list[Requirement]] = {}
    for requirement in requirements:
        grouped.setdefault(RequirementType(requirement.type), []).append(requirement)
    return grouped


class AssessmentPipeline:
    """Decides automated approval of crew registrations."""

    def __init__(
        self,
        gateway: AIGateway,
        store: AssessmentStore,
        notifier: Notifier,
        settings: Optional[AssessmentSettings] = None,
        scorers: Optional[dict[RequirementType, RequirementScorer]] = None
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.notifier = notifier
        self.settings = settings or AssessmentSettings()
        self.scorers = scorers or build_scorers(gateway, store, self.settings)

    async def assess_registration(
        self,
        registration_id: str,
        answers: Optional[list[RegistrationAnswer]] = None
    ) -> AssessmentOutcome:
        """
        Assess one registration end to end.

        Args:
            registration_id: Registration to assess
            answers: The crew member's just-submitted answers. When omitted
                they are read from the store.

        Raises:
            DataIntegrityError: If the registration or a related row is missing
        """
        ctx = await self.store.load_context(registration_id)
        log = logger.bind(registration_id=registration_id, journey_id=ctx.journey.id)

        if not ctx.journey.auto_approval_enabled:
            log.info("Auto-approval disabled for journey, skipping assessment")
            return AssessmentOutcome(
                registration_id=registration_id,
                status=OutcomeStatus.AUTO_APPROVAL_DISABLED,
            )

        if not await self.store.has_ai_consent(ctx.crew.id):
            log.info("Crew has not consented to AI processing, requesting manual review")
            outcome = AssessmentOutcome(
                registration_id=registration_id,
                status=OutcomeStatus.NO_AI_CONSENT,
            )
            try:
                await self.notifier.notify_manual_review_no_consent(
                    owner_id=ctx.owner.id,
                    registration_id=registration_id,
                    crew_name=ctx.crew.display_name,
                    journey_name=ctx.journey.name,
                )
            except Exception as e:
                log.error("Manual review notification failed", error=str(e))
                outcome.notification_error = str(e)
            return outcome

        if answers is None:
            answers = await self.store.get_answers(registration_id)
        answer_map = {a.requirement_id: a for a in answers}

        trail: list[str] = []
        results: list[AssessmentResult] = []

        precheck_failed = await self._run_prechecks(ctx, trail, results)

        ai_results: list[AssessmentResult] = []
        scoring_failed = False
        if precheck_failed:
            trail.append("AI assessment skipped: pre-check failed")
            log.info("Pre-check failed, skipping AI assessment")
        else:
            ai_results, scoring_failed = await self._run_ai_scoring(ctx, answer_map, trail)
            results.extend(ai_results)

        assessment_failed = precheck_failed or scoring_failed

        weights = {r.id: r.weight for r in ctx.requirements}
        if precheck_failed:
            aggregate = 0
        else:
            aggregate = compute_aggregate(
                (r.score, weights.get(r.requirement_id, 0)) for r in ai_results
            )

        threshold = ctx.journey.auto_approval_threshold
        if threshold is None:
            threshold = self.settings.default_threshold

        auto_approve = should_auto_approve(
            aggregate, assessment_failed, ctx.registration.status, threshold
        )

        decision = "auto-approved" if auto_approve else "manual review required"
        trail.append(f"Aggregate score {aggregate}% (threshold {threshold}%): {decision}")
        log.info(
            "Assessment decided",
            aggregate=aggregate,
            threshold=threshold,
            assessment_failed=assessment_failed,
            auto_approved=auto_approve
        )

        ai_requirement_ids = [r.requirement_id for r in ai_results]
        if ai_requirement_ids:
            await self.store.set_results_passed(registration_id, ai_requirement_ids, auto_approve)
        for result in ai_results:
            result.passed = auto_approve

        await self.store.update_registration(
            registration_id,
            ai_match_score=aggregate,
            ai_match_reasoning="\n".join(trail),
            status=RegistrationStatus.APPROVED if auto_approve else None,
            auto_approved=True if auto_approve else None,
        )

        outcome = AssessmentOutcome(
            registration_id=registration_id,
            status=OutcomeStatus.AUTO_APPROVED if auto_approve else OutcomeStatus.PENDING_REVIEW,
            aggregate_score=aggregate,
            threshold=threshold,
            auto_approved=auto_approve,
            assessment_failed=assessment_failed,
            results=results,
            reasoning=trail,
        )

        try:
            await self._notify(ctx, auto_approve, aggregate)
        except Exception as e:
            log.error("Assessment notification failed", error=str(e))
            outcome.notification_error = str(e)

        return outcome

    async def _run_prechecks(
        self,
        ctx: AssessmentContext,
        trail: list[str],
        results: list[AssessmentResult]
    ) -> bool:
        """Run the pre-checks the journey asks for; returns True when any failed."""
        grouped = group_by_type(ctx.requirements)
        failed = False

        for requirement_type, precheck in PRECHECKS.items():
            if requirement_type not in grouped:
                continue

            check = precheck(ctx)
            trail.append(check.reasoning)

            if not check.passed:
                failed = True
                logger.info(
                    "Pre-check failed",
                    registration_id=ctx.registration.id,
                    check=requirement_type.value,
                    missing=check.missing
                )

            # Written once, with its final outcome
            for requirement in grouped.get(requirement_type, []):
                result = AssessmentResult(
                    registration_id=ctx.registration.id,
                    requirement_id=requirement.id,
                    score=10 if check.passed else 0,
                    reasoning=check.reasoning,
                    passed=check.passed,
                )
                await self.store.upsert_result(result)
                results.append(result)

        return failed

    async def _run_ai_scoring(
        self,
        ctx: AssessmentContext,
        answers: dict[str, RegistrationAnswer],
        trail: list[str]
    ) -> tuple[list[AssessmentResult], bool]:
        """Score each AI type independently; one type failing does not stop the others."""
        grouped = group_by_type(ctx.requirements)
        scoring_ctx = ScoringContext(context=ctx, answers=answers)

        results: list[AssessmentResult] = []
        failed = False

        for requirement_type, scorer in self.scorers.items():
            requirements = grouped.get(requirement_type, [])
            if not requirements:
                continue

            try:
                batch = await scorer.score(requirements, scoring_ctx)
            except Exception as e:
                failed = True
                trail.append(f"{requirement_type.value} assessment failed: {e}")
                logger.error(
                    "Requirement scoring failed",
                    registration_id=ctx.registration.id,
                    requirement_type=requirement_type.value,
                    error=str(e)
                )
                batch = ScoreBatch(results=[
                    AssessmentResult(
                        registration_id=ctx.registration.id,
                        requirement_id=requirement.id,
                        score=0,
                        reasoning=f"Assessment error: {e}",
                    )
                    for requirement in requirements
                ])

            for failure in batch.gate_failures:
                failed = True
                trail.append(failure)

            for result in batch.results:
                await self.store.upsert_result(result)
                trail.append(f"{requirement_type.value} {result.requirement_id}: {result.score:g}/10 - {result.reasoning}")

            results.extend(batch.results)

        return results, failed

    async def _notify(self, ctx: AssessmentContext, auto_approved: bool, aggregate: int) -> None:
        """Exactly one branch fires."""
        registration_id = ctx.registration.id

        if auto_approved:
            await self.notifier.notify_registration_approved(
                crew_id=ctx.crew.id,
                registration_id=registration_id,
                journey_name=ctx.journey.name,
                leg_name=ctx.leg.name,
            )
            await self.notifier.notify_owner_auto_approved(
                owner_id=ctx.owner.id,
                registration_id=registration_id,
                crew_name=ctx.crew.display_name,
                journey_name=ctx.journey.name,
                score=aggregate,
            )
            return

        await self.notifier.notify_registration_pending(
            crew_id=ctx.crew.id,
            registration_id=registration_id,
            journey_name=ctx.journey.name,
            leg_name=ctx.leg.name,
        )
        await self.notifier.notify_owner_review_needed(
            owner_id=ctx.owner.id,
            registration_id=registration_id,
            crew_name=ctx.crew.display_name,
            journey_name=ctx.journey.name,
            score=aggregate,
        )
        if ctx.owner.email:
            await self.notifier.send_review_needed_email(
                email=ctx.owner.email,
                owner_id=ctx.owner.id,
                crew_name=ctx.crew.display_name,
                journey_name=ctx.journey.name,
                score=aggregate,
                link=owner_registration_link(registration_id),
            )
