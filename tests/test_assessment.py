"""Tests for the registration assessment pipeline."""

from unittest.mock import AsyncMock

import pytest

from shared.config import AssessmentSettings, GatewayConfig, ProviderRoute
from shared.errors import DataIntegrityError, ProviderError
from shared.models import (
    ImageAttachment,
    Journey,
    Leg,
    NotificationType,
    PassportDocument,
    Profile,
    Registration,
    RegistrationAnswer,
    RegistrationStatus,
)


def make_gateway(provider):
    from gateway import AIGateway

    config = GatewayConfig(providers=(ProviderRoute(provider="mock", models=("mock-model",)),))
    return AIGateway(config, providers={"mock": provider})


def make_store(auto_approval: bool = True, consent: bool = True, crew_risk=None):
    from assessment.store import InMemoryAssessmentStore

    store = InMemoryAssessmentStore()
    store.journeys["j1"] = Journey(
        id="j1",
        name="Atlantic Crossing",
        owner_id="owner1",
        auto_approval_enabled=auto_approval,
        auto_approval_threshold=80,
        risk_level=["Coastal sailing", "Offshore sailing"],
        min_experience_level=2,
    )
    store.legs["l1"] = Leg(id="l1", journey_id="j1", name="Las Palmas to Mindelo")
    store.profiles["owner1"] = Profile(id="owner1", full_name="Skipper Sam", email="sam@example.com")
    store.profiles["crew1"] = Profile(
        id="crew1",
        full_name="Ana Crew",
        experience_level=3,
        risk_level=crew_risk if crew_risk is not None else ["Coastal sailing", "Offshore sailing"],
        skills=['{"skill_name": "Navigation", "description": "Day skipper theory"}'],
    )
    store.registrations["r1"] = Registration(id="r1", user_id="crew1", leg_id="l1")
    store.consents["crew1"] = consent
    return store


def add_skill_and_question(store, skill_weight: float = 5, question_weight: float = 5):
    store.add_requirement({
        "id": "s1", "journey_id": "j1", "type": "skill",
        "skill_name": "Navigation", "weight": skill_weight, "order": 1,
    })
    store.add_requirement({
        "id": "q1", "journey_id": "j1", "type": "question",
        "question_text": "Why do you want to sail with us?", "weight": question_weight, "order": 2,
    })


def scores(requirement_id: str, score: int) -> str:
    return f'[{{"requirement_id": "{requirement_id}", "score": {score}, "reasoning": "ok"}}]'


class TestAggregation:
    """Tests for the weighted aggregate and the decision."""

    def test_empty_set_scores_full(self):
        from assessment.aggregation import compute_aggregate

        assert compute_aggregate([]) == 100

    def test_weighted_mean_scaled_to_percent(self):
        from assessment.aggregation import compute_aggregate

        assert compute_aggregate([(8, 5), (6, 5)]) == 70
        assert compute_aggregate([(10, 9), (0, 1)]) == 90

    def test_rounds_half_up(self):
        from assessment.aggregation import compute_aggregate

        assert compute_aggregate([(7.25, 1)]) == 73

    def test_zero_weights_average_unweighted(self):
        from assessment.aggregation import compute_aggregate

        assert compute_aggregate([(6, 0), (8, 0)]) == 70

    def test_out_of_range_inputs_are_clamped(self):
        from assessment.aggregation import compute_aggregate

        assert compute_aggregate([(15, 5)]) == 100

    def test_should_auto_approve(self):
        from assessment.aggregation import should_auto_approve

        assert should_auto_approve(85, False, RegistrationStatus.PENDING, 80)
        assert not should_auto_approve(85, True, RegistrationStatus.PENDING, 80)
        assert not should_auto_approve(85, False, RegistrationStatus.APPROVED, 80)
        assert not should_auto_approve(79, False, RegistrationStatus.PENDING)
        assert should_auto_approve(80, False, RegistrationStatus.PENDING)


class TestPrechecks:
    """Tests for the deterministic pre-checks."""

    def test_risk_level_missing(self):
        from assessment.prechecks import check_risk_level

        result = check_risk_level(["Coastal sailing", "Offshore sailing"], "Coastal sailing")

        assert not result.passed
        assert result.missing == ["Offshore sailing"]

    def test_risk_level_accepts_json_encoded_list(self):
        from assessment.prechecks import check_risk_level

        result = check_risk_level('["Coastal sailing"]', ["Coastal sailing", "Offshore sailing"])
        assert result.passed

    def test_no_risk_requirement_passes(self):
        from assessment.prechecks import check_risk_level

        assert check_risk_level(None, None).passed

    def test_experience_too_low_names_levels(self):
        from assessment.prechecks import check_experience_level

        result = check_experience_level(2, 3)

        assert not result.passed
        assert "Competent Crew" in result.reasoning
        assert "Coastal Skipper" in result.reasoning

    def test_experience_unset_fails(self):
        from assessment.prechecks import check_experience_level

        assert not check_experience_level(None, 1).passed
        assert check_experience_level(None, None).passed


class TestScorers:
    """Tests for the per-type AI scorers."""

    def test_normalize_skills(self):
        from assessment.scorers import normalize_skills

        skills = normalize_skills([
            '{"skill_name": "Navigation", "description": "Coastal"}',
            "Cooking",
            {"name": "First aid"},
        ])

        assert [s["skill_name"] for s in skills] == ["Navigation", "Cooking", "First aid"]
        assert skills[0]["description"] == "Coastal"

    @pytest.mark.asyncio
    async def test_batch_entries_matched_by_position_and_missing_scored_zero(self):
        from assessment.scorers import SkillScorer
        from gateway import MockProvider

        store = make_store()
        add_skill_and_question(store)
        requirements = [store.requirements["j1"][0], store.requirements["j1"][1]]

        scorer = SkillScorer(make_gateway(MockProvider("mock")), AssessmentSettings())
        results = scorer.match_entries(requirements, [{"score": 7, "reasoning": "good"}, "bad"], "r1")

        assert results[0].score == 7
        assert results[1].score == 0
        assert "No assessment returned" in results[1].reasoning

    @pytest.mark.asyncio
    async def test_passport_score_and_photo_penalty(self):
        """Confidence 0.9 scores 9; a required photo that is missing costs 3 points."""
        from assessment.scorers import PassportScorer, ScoringContext
        from gateway import MockProvider

        store = make_store()
        requirement = store.add_requirement({
            "id": "p1", "journey_id": "j1", "type": "passport",
            "passport_options": {"require_photo_validation": True},
        })
        store.passports["doc1"] = PassportDocument(
            id="doc1", owner_id="crew1", image=ImageAttachment(data="aGVsbG8=")
        )
        provider = MockProvider("mock", responses=[
            '{"is_valid_passport": true, "is_expired": false, "holder_name": "Ana Crew", '
            '"expiry_date": "2099-01-01", "confidence": 0.9}'
        ])

        scorer = PassportScorer(make_gateway(provider), AssessmentSettings(), store)
        ctx = ScoringContext(
            context=await store.load_context("r1"),
            answers={"p1": RegistrationAnswer(requirement_id="p1", passport_document_id="doc1")},
        )
        batch = await scorer.score([requirement], ctx)

        result = batch.results[0]
        assert result.score == 6
        assert result.photo_verified is False
        assert len(batch.gate_failures) == 1
        assert len(provider.call_history[0]["images"]) == 1

    @pytest.mark.asyncio
    async def test_passport_past_expiry_scores_zero(self):
        from assessment.scorers import PassportScorer, ScoringContext
        from gateway import MockProvider

        store = make_store()
        requirement = store.add_requirement({
            "id": "p1", "journey_id": "j1", "type": "passport", "is_required": False,
        })
        store.passports["doc1"] = PassportDocument(
            id="doc1", owner_id="crew1", image=ImageAttachment(data="aGVsbG8=")
        )
        provider = MockProvider("mock", responses=[
            '{"is_valid_passport": true, "is_expired": false, "expiry_date": "2001-05-01", "confidence": 1}'
        ])

        scorer = PassportScorer(make_gateway(provider), AssessmentSettings(), store)
        ctx = ScoringContext(
            context=await store.load_context("r1"),
            answers={"p1": RegistrationAnswer(requirement_id="p1", passport_document_id="doc1")},
        )
        batch = await scorer.score([requirement], ctx)

        assert batch.results[0].score == 0
        assert "expired" in batch.results[0].reasoning
        assert batch.gate_failures == []

    @pytest.mark.asyncio
    async def test_passport_without_document_makes_no_call(self):
        from assessment.scorers import PassportScorer, ScoringContext
        from gateway import MockProvider

        store = make_store()
        requirement = store.add_requirement({"id": "p1", "journey_id": "j1", "type": "passport"})
        provider = MockProvider("mock")

        scorer = PassportScorer(make_gateway(provider), AssessmentSettings(), store)
        ctx = ScoringContext(context=await store.load_context("r1"))
        batch = await scorer.score([requirement], ctx)

        assert batch.results[0].score == 0
        assert provider.call_history == []


class TestAssessmentPipeline:
    """Tests for the end-to-end decision branches."""

    @pytest.mark.asyncio
    async def test_auto_approval_disabled(self):
        from assessment.notifier import RecordingNotifier
        from assessment.pipeline import AssessmentPipeline, OutcomeStatus
        from gateway import MockProvider

        store = make_store(auto_approval=False)
        add_skill_and_question(store)
        provider = MockProvider("mock")
        notifier = RecordingNotifier()

        outcome = await AssessmentPipeline(make_gateway(provider), store, notifier).assess_registration("r1")

        assert outcome.status == OutcomeStatus.AUTO_APPROVAL_DISABLED
        assert provider.call_history == []
        assert store.results == {}
        assert notifier.notifications == []

    @pytest.mark.asyncio
    async def test_no_consent_requests_manual_review(self):
        from assessment.notifier import RecordingNotifier
        from assessment.pipeline import AssessmentPipeline, OutcomeStatus
        from gateway import MockProvider

        store = make_store(consent=False)
        add_skill_and_question(store)
        provider = MockProvider("mock")
        notifier = RecordingNotifier()

        outcome = await AssessmentPipeline(make_gateway(provider), store, notifier).assess_registration("r1")

        assert outcome.status == OutcomeStatus.NO_AI_CONSENT
        assert provider.call_history == []
        review = notifier.of_type(NotificationType.AI_REVIEW_NEEDED)
        assert len(review) == 1
        assert review[0].user_id == "owner1"
        assert review[0].metadata["reason"] == "no_ai_consent"

    @pytest.mark.asyncio
    async def test_auto_approved(self):
        from assessment.notifier import RecordingNotifier
        from assessment.pipeline import AssessmentPipeline, OutcomeStatus
        from gateway import MockProvider

        store = make_store()
        add_skill_and_question(store)
        provider = MockProvider("mock", responses=[scores("s1", 9), scores("q1", 8)])
        notifier = RecordingNotifier()

        outcome = await AssessmentPipeline(make_gateway(provider), store, notifier).assess_registration("r1")

        assert outcome.status == OutcomeStatus.AUTO_APPROVED
        assert outcome.aggregate_score == 85
        registration = store.registrations["r1"]
        assert registration.status == RegistrationStatus.APPROVED
        assert registration.auto_approved is True
        assert registration.ai_match_score == 85
        assert all(r.passed for r in store.results_for("r1"))
        assert len(notifier.of_type(NotificationType.REGISTRATION_APPROVED)) == 1
        assert len(notifier.of_type(NotificationType.AI_AUTO_APPROVED)) == 1
        assert notifier.emails == []

    @pytest.mark.asyncio
    async def test_below_threshold_needs_review_and_emails_owner(self):
        from assessment.notifier import RecordingNotifier
        from assessment.pipeline import AssessmentPipeline, OutcomeStatus
        from gateway import MockProvider

        store = make_store()
        add_skill_and_question(store)
        provider = MockProvider("mock", responses=[scores("s1", 5), scores("q1", 5)])
        notifier = RecordingNotifier()

        outcome = await AssessmentPipeline(make_gateway(provider), store, notifier).assess_registration("r1")

        assert outcome.status == OutcomeStatus.PENDING_REVIEW
        assert outcome.aggregate_score == 50
        assert store.registrations["r1"].status == RegistrationStatus.PENDING
        assert store.registrations["r1"].ai_match_score == 50
        assert len(notifier.of_type(NotificationType.REGISTRATION_PENDING)) == 1
        assert len(notifier.of_type(NotificationType.AI_REVIEW_NEEDED)) == 1
        assert notifier.emails[0]["email"] == "sam@example.com"
        assert notifier.emails[0]["link"] == "/owner/registrations/r1"

    @pytest.mark.asyncio
    async def test_scoring_failure_blocks_approval_despite_high_aggregate(self):
        from assessment.notifier import RecordingNotifier
        from assessment.pipeline import AssessmentPipeline, OutcomeStatus
        from gateway import MockProvider

        store = make_store()
        add_skill_and_question(store, skill_weight=1, question_weight=10)
        provider = MockProvider("mock", responses=[
            ProviderError("HTTP 503", provider="mock"),
            scores("q1", 10),
        ])
        notifier = RecordingNotifier()

        outcome = await AssessmentPipeline(make_gateway(provider), store, notifier).assess_registration("r1")

        assert outcome.aggregate_score == 91
        assert outcome.assessment_failed is True
        assert outcome.status == OutcomeStatus.PENDING_REVIEW
        assert store.registrations["r1"].status == RegistrationStatus.PENDING
        skill_result = store.results[("r1", "s1")]
        assert skill_result.score == 0
        assert skill_result.reasoning.startswith("Assessment error")

    @pytest.mark.asyncio
    async def test_precheck_failure_skips_ai(self):
        from assessment.notifier import RecordingNotifier
        from assessment.pipeline import AssessmentPipeline
        from gateway import MockProvider

        store = make_store(crew_risk="Coastal sailing")
        store.add_requirement({"id": "risk", "journey_id": "j1", "type": "risk_level"})
        add_skill_and_question(store)
        provider = MockProvider("mock")
        notifier = RecordingNotifier()

        outcome = await AssessmentPipeline(make_gateway(provider), store, notifier).assess_registration("r1")

        assert provider.call_history == []
        assert outcome.aggregate_score == 0
        assert outcome.assessment_failed is True
        risk = store.results[("r1", "risk")]
        assert risk.score == 0
        assert risk.passed is False
        assert "AI assessment skipped: pre-check failed" in outcome.reasoning

    @pytest.mark.asyncio
    async def test_prechecks_without_requirement_rows_are_skipped(self):
        from assessment.notifier import RecordingNotifier
        from assessment.pipeline import AssessmentPipeline, OutcomeStatus
        from gateway import MockProvider

        store = make_store(crew_risk="Coastal sailing")
        store.profiles["crew1"].experience_level = 1
        store.add_requirement({
            "id": "s1", "journey_id": "j1", "type": "skill",
            "skill_name": "Navigation", "weight": 5, "order": 1,
        })
        provider = MockProvider("mock", responses=[scores("s1", 9)])

        outcome = await AssessmentPipeline(make_gateway(provider), store, RecordingNotifier()).assess_registration("r1")

        assert outcome.status == OutcomeStatus.AUTO_APPROVED
        assert outcome.aggregate_score == 90
        assert outcome.assessment_failed is False
        assert len(provider.call_history) == 1
        assert "AI assessment skipped: pre-check failed" not in outcome.reasoning

    @pytest.mark.asyncio
    async def test_submitted_answers_reach_question_prompt(self):
        from assessment.notifier import RecordingNotifier
        from assessment.pipeline import AssessmentPipeline
        from gateway import MockProvider

        store = make_store()
        add_skill_and_question(store)
        provider = MockProvider("mock", responses=[scores("s1", 9), scores("q1", 9)])

        await AssessmentPipeline(make_gateway(provider), store, RecordingNotifier()).assess_registration(
            "r1",
            answers=[RegistrationAnswer(requirement_id="q1", answer_text="I love night watches")],
        )

        assert "I love night watches" in provider.call_history[1]["prompt"]

    @pytest.mark.asyncio
    async def test_missing_row_fails_before_any_write(self):
        from assessment.notifier import RecordingNotifier
        from assessment.pipeline import AssessmentPipeline
        from gateway import MockProvider

        store = make_store()
        del store.legs["l1"]
        notifier = RecordingNotifier()

        with pytest.raises(DataIntegrityError):
            await AssessmentPipeline(make_gateway(MockProvider("mock")), store, notifier).assess_registration("r1")

        assert store.results == {}
        assert store.registrations["r1"].ai_match_score is None
        assert notifier.notifications == []

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_decision(self):
        from assessment.notifier import RecordingNotifier
        from assessment.pipeline import AssessmentPipeline, OutcomeStatus
        from gateway import MockProvider

        store = make_store()
        add_skill_and_question(store)
        provider = MockProvider("mock", responses=[scores("s1", 10), scores("q1", 10)])
        notifier = RecordingNotifier()
        notifier.create_notification = AsyncMock(side_effect=RuntimeError("notification service down"))

        outcome = await AssessmentPipeline(make_gateway(provider), store, notifier).assess_registration("r1")

        assert outcome.status == OutcomeStatus.AUTO_APPROVED
        assert outcome.notification_error == "notification service down"
        assert store.registrations["r1"].status == RegistrationStatus.APPROVED
        notifier.create_notification.assert_awaited_once()
