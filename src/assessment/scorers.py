"""AI scorers, one per requirement type.

Skill and question requirements are batched into a single prompt each and
expect a JSON array back, one entry per requirement in input order.
Passport requirements run a two-stage vision check. A scorer raises when
its whole stage fails; the pipeline turns that into zero scores and a
failed assessment.
"""

import json
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from shared.config import AssessmentSettings
from shared.errors import SailMatchError
from shared.logging import get_logger
from shared.models import (
    AssessmentContext,
    AssessmentResult,
    PassportRequirement,
    RegistrationAnswer,
    Requirement,
    RequirementType,
    clamp,
)
from shared.parsing import parse_json_response
from assessment.aggregation import round_half_up
from assessment.store import AssessmentStore
from gateway.gateway import AIGateway

logger = get_logger(__name__)


SKILL_PROMPT = """You are assessing whether a sailing crew member meets a skipper's skill requirements for a voyage.

Journey: {journey_name}
Leg: {leg_name}

Crew member's declared skills:
{crew_skills}

Skill requirements (in order):
{requirements}

For each requirement, score from 0 to 10 how well the crew member's declared skills satisfy its qualification criteria. 0 means no evidence at all, 10 means fully demonstrated. Judge only from the skills listed above.

Respond with ONLY a JSON array with exactly one object per requirement, in the same order:
[{{"requirement_id": "<id>", "score": <integer 0-10>, "reasoning": "<one or two sentences>"}}]"""


QUESTION_PROMPT = """You are assessing a sailing crew member's answers to a skipper's registration questions.

Journey: {journey_name}
Leg: {leg_name}

Questions, the skipper's criteria and the crew member's answers (in order):
{requirements}

For each question, score from 0 to 10 how well the answer satisfies the criteria. An empty or evasive answer scores 0.

Respond with ONLY a JSON array with exactly one object per question, in the same order:
[{{"requirement_id": "<id>", "score": <integer 0-10>, "reasoning": "<one or two sentences>"}}]"""


PASSPORT_PROMPT = """Examine this image of an identity document. Today's date is {today}.

Determine whether it is a genuine-looking passport data page, whether it has expired, and who the holder is.

Respond with ONLY a JSON object:
{{"is_valid_passport": <true|false>, "is_expired": <true|false>, "holder_name": "<name or null>", "expiry_date": "<YYYY-MM-DD or null>", "confidence": <number 0-1>, "notes": "<short explanation>"}}"""


FACE_MATCH_PROMPT = """The first image is a passport data page. The second image is a photo of a person.

Decide whether the face in the photo belongs to the passport holder.

Respond with ONLY a JSON object:
{{"faces_match": <true|false>, "confidence": <number 0-1>, "reasoning": "<short explanation>"}}"""


class ScoreBatch(BaseModel):
    """Scores for the requirements of one type."""
    results: list[AssessmentResult] = Field(default_factory=list)
    gate_failures: list[str] = Field(
        default_factory=list,
        description="Required requirements that missed their own pass mark"
    )


class ScoringContext(BaseModel):
    context: AssessmentContext
    answers: dict[str, RegistrationAnswer] = Field(default_factory=dict)

    @property
    def registration_id(self) -> str:
        return self.context.registration.id


def normalize_skills(skills: Sequence[Any]) -> list[dict[str, str]]:
    """Crew skills are stored as JSON strings, dicts or bare names."""
    normalized = []
    for skill in skills or []:
        if isinstance(skill, str):
            try:
                skill = json.loads(skill)
            except json.JSONDecodeError:
                skill = {"skill_name": skill}
        if isinstance(skill, dict):
            name = skill.get("skill_name") or skill.get("name")
            if name:
                normalized.append({
                    "skill_name": str(name),
                    "description": str(skill.get("description") or ""),
                })
        elif skill:
            normalized.append({"skill_name": str(skill), "description": ""})
    return normalized


def coerce_score(value: Any) -> Optional[float]:
    try:
        return clamp(float(value))
    except (TypeError, ValueError):
        return None


def coerce_confidence(value: Any) -> float:
    try:
        return clamp(float(value), 0, 1)
    except (TypeError, ValueError):
        return 0.0


def answer_text(answer: Optional[RegistrationAnswer]) -> str:
    if answer is None:
        return ""
    if answer.answer_text and answer.answer_text.strip():
        return answer.answer_text.strip()
    if answer.answer_json is not None:
        return json.dumps(answer.answer_json)
    return ""


class RequirementScorer(ABC):
    """Scores every requirement of one type for one registration."""

    requirement_type: RequirementType

    def __init__(self, gateway: AIGateway, settings: AssessmentSettings) -> None:
        self.gateway = gateway
        self.settings = settings

    @abstractmethod
    async def score(self, requirements: list[Requirement], ctx: ScoringContext) -> ScoreBatch:
        pass


class BatchScorer(RequirementScorer):
    """One prompt for all requirements of the type, JSON array back."""

    @abstractmethod
    def build_prompt(self, requirements: list[Requirement], ctx: ScoringContext) -> str:
        pass

    async def score(self, requirements: list[Requirement], ctx: ScoringContext) -> ScoreBatch:
        if not requirements:
            return ScoreBatch()

        response = await self.gateway.call_ai(
            use_case=self.settings.use_case,
            prompt=self.build_prompt(requirements, ctx),
        )
        entries = parse_json_response(response.text, expect="array")

        logger.debug(
            "Batch scored",
            requirement_type=self.requirement_type.value,
            requested=len(requirements),
            returned=len(entries),
            provider=response.provider,
            model=response.model
        )
        return ScoreBatch(results=self.match_entries(requirements, entries, ctx.registration_id))

    def match_entries(
        self,
        requirements: list[Requirement],
        entries: list[Any],
        registration_id: str
    ) -> list[AssessmentResult]:
        """
        Pair response entries with requirements.

        Entries carrying a known requirement_id are matched by id; otherwise
        by position. Missing or malformed entries score 0.
        """
        known_ids = {r.id for r in requirements}
        by_id = {
            str(entry.get("requirement_id")): entry
            for entry in entries
            if isinstance(entry, dict) and str(entry.get("requirement_id")) in known_ids
        }

        results = []
        for index, requirement in enumerate(requirements):
            entry = by_id.get(requirement.id)
            if entry is None and not by_id and index < len(entries):
                entry = entries[index]

            if not isinstance(entry, dict):
                results.append(AssessmentResult(
                    registration_id=registration_id,
                    requirement_id=requirement.id,
                    score=0,
                    reasoning="No assessment returned by AI for this requirement",
                ))
                continue

            score = coerce_score(entry.get("score"))
            reasoning = str(entry.get("reasoning") or "").strip()
            if score is None:
                score = 0
                reasoning = f"Invalid score in AI response. {reasoning}".strip()

            results.append(AssessmentResult(
                registration_id=registration_id,
                requirement_id=requirement.id,
                score=score,
                reasoning=reasoning,
            ))
        return results


class SkillScorer(BatchScorer):
    requirement_type = RequirementType.SKILL

    def build_prompt(self, requirements: list[Requirement], ctx: ScoringContext) -> str:
        skills = normalize_skills(ctx.context.crew.skills)
        if skills:
            crew_skills = "\n".join(
                f"- {s['skill_name']}: {s['description']}" if s["description"] else f"- {s['skill_name']}"
                for s in skills
            )
        else:
            crew_skills = "(no skills declared)"

        lines = []
        for index, requirement in enumerate(requirements, start=1):
            lines.append(
                f"{index}. requirement_id={requirement.id}; skill: {requirement.skill_name}; "
                f"criteria: {requirement.qualification_criteria or 'general competence'}"
            )

        return SKILL_PROMPT.format(
            journey_name=ctx.context.journey.name,
            leg_name=ctx.context.leg.name,
            crew_skills=crew_skills,
            requirements="\n".join(lines),
        )


class QuestionScorer(BatchScorer):
    requirement_type = RequirementType.QUESTION

    def build_prompt(self, requirements: list[Requirement], ctx: ScoringContext) -> str:
        blocks = []
        for index, requirement in enumerate(requirements, start=1):
            answer = answer_text(ctx.answers.get(requirement.id)) or "(no answer provided)"
            blocks.append(
                f"{index}. requirement_id={requirement.id}\n"
                f"   Question: {requirement.question_text}\n"
                f"   Criteria: {requirement.qualification_criteria or 'a relevant, honest answer'}\n"
                f"   Answer: {answer}"
            )

        return QUESTION_PROMPT.format(
            journey_name=ctx.context.journey.name,
            leg_name=ctx.context.leg.name,
            requirements="\n".join(blocks),
        )


class PassportScorer(RequirementScorer):
    """
    Two-stage passport check.

    Stage 1 validates the document: invalid or expired scores 0, otherwise
    round(confidence * 10). When the requirement asks for photo validation,
    stage 2 compares the passport with the crew member's photo; a match
    below the minimum confidence, a failed call or a missing photo costs
    `photo_penalty` points.
    """

    requirement_type = RequirementType.PASSPORT

    def __init__(
        self,
        gateway: AIGateway,
        settings: AssessmentSettings,
        store: AssessmentStore
    ) -> None:
        super().__init__(gateway, settings)
        self.store = store

    async def score(self, requirements: list[Requirement], ctx: ScoringContext) -> ScoreBatch:
        batch = ScoreBatch()
        for requirement in requirements:
            result = await self._score_one(requirement, ctx)
            batch.results.append(result)

            pass_score = self.pass_score(requirement)
            if requirement.is_required and result.score < pass_score:
                batch.gate_failures.append(
                    f"Passport check scored {result.score:g}, below the required {pass_score}"
                )
        return batch

    def pass_score(self, requirement: PassportRequirement) -> int:
        configured = requirement.passport_options.pass_confidence_score
        return configured if configured is not None else self.settings.default_passport_pass_score

    async def _score_one(self, requirement: PassportRequirement, ctx: ScoringContext) -> AssessmentResult:
        answer = ctx.answers.get(requirement.id)
        document = None
        if answer and answer.passport_document_id:
            document = await self.store.get_passport_document(answer.passport_document_id)

        if document is None:
            return AssessmentResult(
                registration_id=ctx.registration_id,
                requirement_id=requirement.id,
                score=0,
                reasoning="No passport document provided",
            )

        response = await self.gateway.call_ai(
            use_case=self.settings.vision_use_case,
            prompt=PASSPORT_PROMPT.format(today=date.today().isoformat()),
            image=document.image,
        )
        verdict = parse_json_response(response.text, expect="object")

        confidence = coerce_confidence(verdict.get("confidence"))
        is_valid = bool(verdict.get("is_valid_passport"))
        is_expired = bool(verdict.get("is_expired")) or self._expiry_passed(verdict.get("expiry_date"))
        holder = verdict.get("holder_name") or "unknown holder"

        if not is_valid or is_expired:
            reason = "not a valid passport" if not is_valid else "passport has expired"
            return AssessmentResult(
                registration_id=ctx.registration_id,
                requirement_id=requirement.id,
                score=0,
                reasoning=f"Passport rejected: {reason}. {verdict.get('notes') or ''}".strip(),
            )

        score = round_half_up(confidence * 10)
        reasoning = [f"Valid passport for {holder} (confidence {confidence:.2f})"]
        photo_verified: Optional[bool] = None
        photo_confidence: Optional[float] = None

        if requirement.passport_options.require_photo_validation:
            photo_verified, photo_confidence, note = await self._verify_photo(document.image, answer)
            reasoning.append(note)
            if not photo_verified:
                score = max(0, score - self.settings.photo_penalty)
                reasoning.append(f"{self.settings.photo_penalty} points deducted")

        return AssessmentResult(
            registration_id=ctx.registration_id,
            requirement_id=requirement.id,
            score=score,
            reasoning="; ".join(reasoning),
            photo_verified=photo_verified,
            photo_confidence=photo_confidence,
        )

    async def _verify_photo(
        self,
        passport_image: Any,
        answer: Optional[RegistrationAnswer]
    ) -> tuple[bool, Optional[float], str]:
        if answer is None or answer.photo is None:
            return False, None, "Photo verification required but no photo supplied"

        try:
            response = await self.gateway.call_ai(
                use_case=self.settings.vision_use_case,
                prompt=FACE_MATCH_PROMPT,
                images=[passport_image, answer.photo],
            )
            verdict = parse_json_response(response.text, expect="object")
        except SailMatchError as e:
            logger.warning("Face match failed", error=str(e))
            return False, None, f"Photo verification failed: {e}"

        confidence = coerce_confidence(verdict.get("confidence"))
        matched = bool(verdict.get("faces_match")) and confidence >= self.settings.face_match_min_confidence

        if matched:
            return True, confidence, f"Photo matches passport holder (confidence {confidence:.2f})"
        return False, confidence, f"Photo not accepted as a match (confidence {confidence:.2f})"

    @staticmethod
    def _expiry_passed(expiry: Any) -> bool:
        if not isinstance(expiry, str):
            return False
        try:
            return date.fromisoformat(expiry[:10]) < date.today()
        except ValueError:
            return False


def build_scorers(
    gateway: AIGateway,
    store: AssessmentStore,
    settings: AssessmentSettings
) -> dict[RequirementType, RequirementScorer]:
    """One scorer per AI-scored requirement type."""
    return {
        RequirementType.SKILL: SkillScorer(gateway, settings),
        RequirementType.QUESTION: QuestionScorer(gateway, settings),
        RequirementType.PASSPORT: PassportScorer(gateway, settings, store),
    }
