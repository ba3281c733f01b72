"""Tests for the sailing assistant."""

import json
from datetime import date

import pytest

from shared.config import GatewayConfig, ProviderRoute
from shared.errors import ToolPermissionError
from shared.models import (
    Journey,
    Leg,
    Location,
    PendingAction,
    Profile,
    Registration,
    ToolCall,
    ToolResult,
    ToolResultStatus,
    UserContext,
)

LEG_ID = "6c8a1f2e-4b3d-4c1a-9e7f-1a2b3c4d5e6f"
FAKE_LEG_ID = "deadbeef-0000-4000-8000-000000000000"

CREW = UserContext(user_id="crew1", username="ana", roles=["crew"])
OWNER = UserContext(user_id="owner1", username="sam", roles=["owner"])
ANONYMOUS = UserContext.anonymous()


def tool_block(name: str, **arguments) -> str:
    return "```tool_call\n" + json.dumps({"name": name, "arguments": arguments}) + "\n```"


def make_store():
    from assessment.store import InMemoryAssessmentStore

    store = InMemoryAssessmentStore()
    store.journeys["j1"] = Journey(
        id="j1",
        name="Atlantic Crossing",
        owner_id="owner1",
        risk_level=["Offshore sailing"],
    )
    store.legs[LEG_ID] = Leg(
        id=LEG_ID,
        journey_id="j1",
        name="Las Palmas to Mindelo",
        start_date=date(2026, 11, 20),
        end_date=date(2026, 12, 1),
        start_location=Location(name="Las Palmas", lat=28.13, lng=-15.43),
        end_location=Location(name="Mindelo", lat=16.89, lng=-24.98),
        skills=["Navigation"],
        crew_needed=2,
    )
    store.profiles["owner1"] = Profile(id="owner1", full_name="Skipper Sam", roles=["owner"])
    store.profiles["crew1"] = Profile(id="crew1", full_name="Ana Crew", roles=["crew"])
    return store


def make_assistant(provider=None, store=None):
    from assistant import ConversationOrchestrator, InMemoryToolBackend, ToolExecutor, ToolRegistry
    from gateway import AIGateway, MockProvider

    provider = provider or MockProvider("mock")
    store = store or make_store()
    registry = ToolRegistry.default()
    executor = ToolExecutor(registry, InMemoryToolBackend(store))
    gateway = AIGateway(
        GatewayConfig(providers=(ProviderRoute(provider="mock", models=("mock-model",)),)),
        providers={"mock": provider},
    )
    return ConversationOrchestrator(gateway, registry, executor), executor, store


class TestToolRegistry:
    """Tests for the catalogue and per-caller filtering."""

    def test_anonymous_sees_only_public_tools(self):
        from assistant import ToolRegistry
        from shared.models import ToolAccess

        tools = ToolRegistry.default().tools_for_user(ANONYMOUS)

        assert tools
        assert all(tool.access == ToolAccess.PUBLIC for tool in tools)

    def test_crew_does_not_see_owner_tools(self):
        from assistant import ToolRegistry

        names = {tool.name for tool in ToolRegistry.default().tools_for_user(CREW)}

        assert "suggest_register_for_leg" in names
        assert "get_user_profile" in names
        assert "suggest_approve_registration" not in names

    def test_register_duplicate_raises(self):
        from assistant import ToolRegistry
        from shared.models import ToolDefinition

        registry = ToolRegistry()
        registry.register(ToolDefinition(name="ping", description="Ping"))

        with pytest.raises(ValueError, match="already registered"):
            registry.register(ToolDefinition(name="ping", description="Ping again"))

    def test_validate_unknown_tool(self):
        from assistant import ToolRegistry

        is_valid, errors = ToolRegistry.default().validate_input("nope", {})

        assert not is_valid
        assert errors == ["Tool 'nope' not found"]

    def test_prompt_marks_action_tools(self):
        from assistant import ToolRegistry

        text = ToolRegistry.default().describe_for_prompt(CREW)
        assert "- suggest_register_for_leg (action, requires user approval)" in text


class TestToolExecutor:
    """Tests for access checks, validation and the approval gate."""

    @pytest.mark.asyncio
    async def test_forged_owner_call_rejected(self):
        """A model naming an owner tool for a crew caller gets nothing back."""
        _, executor, store = make_assistant()
        store.registrations["r1"] = Registration(id="r1", user_id="crew1", leg_id=LEG_ID)

        call = ToolCall(id="c1", name="suggest_approve_registration",
                        arguments={"registrationId": "r1", "reason": "looks good"})
        result = await executor.execute(call, CREW, approved=True)

        assert result.status == ToolResultStatus.UNAUTHORIZED
        assert "'owner' role" in result.error
        assert store.registrations["r1"].status.value == "Pending approval"

    @pytest.mark.asyncio
    async def test_anonymous_needs_sign_in(self):
        _, executor, _ = make_assistant()

        result = await executor.execute(ToolCall(id="c1", name="get_user_profile"), ANONYMOUS)

        assert result.status == ToolResultStatus.UNAUTHORIZED
        assert "sign in" in result.error

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        _, executor, _ = make_assistant()

        result = await executor.execute(ToolCall(id="c1", name="delete_everything"), OWNER)
        assert result.status == ToolResultStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_schema_violation(self):
        _, executor, _ = make_assistant()

        call = ToolCall(id="c1", name="search_legs_by_location", arguments={
            "departureBbox": {"minLng": -18.5, "minLat": 27.0, "maxLng": -13.0},
        })
        result = await executor.execute(call, ANONYMOUS)

        assert result.status == ToolResultStatus.VALIDATION_ERROR
        assert "maxLat" in result.error

    @pytest.mark.asyncio
    async def test_snake_case_arguments_are_normalized(self):
        _, executor, _ = make_assistant()

        call = ToolCall(id="c1", name="get_leg_details", arguments={"leg_id": LEG_ID})
        result = await executor.execute(call, ANONYMOUS)

        assert result.status == ToolResultStatus.SUCCESS
        assert call.arguments == {"legId": LEG_ID}

    @pytest.mark.asyncio
    async def test_action_without_approval_is_pending(self):
        _, executor, store = make_assistant()

        call = ToolCall(id="c1", name="suggest_register_for_leg",
                        arguments={"legId": LEG_ID, "reason": "fits your plans"})
        result = await executor.execute(call, CREW)

        assert result.status == ToolResultStatus.PENDING_APPROVAL
        assert result.data["label"] == "Register for leg"
        assert store.registrations == {}

    @pytest.mark.asyncio
    async def test_owner_of_other_journey_rejected(self):
        _, executor, store = make_assistant()
        store.registrations["r1"] = Registration(id="r1", user_id="crew1", leg_id=LEG_ID)
        other_owner = UserContext(user_id="owner2", roles=["owner"])

        call = ToolCall(id="c1", name="get_leg_registrations", arguments={"legId": LEG_ID})
        result = await executor.execute(call, other_owner)

        assert result.status == ToolResultStatus.UNAUTHORIZED
        assert result.error == "you do not own this journey"

    @pytest.mark.asyncio
    async def test_missing_row_reported_as_not_found(self):
        _, executor, _ = make_assistant()

        call = ToolCall(id="c1", name="get_leg_details", arguments={"legId": FAKE_LEG_ID})
        result = await executor.execute(call, ANONYMOUS)

        assert result.status == ToolResultStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_fetch_all_boats_by_role(self):
        """Owners see their own boats; crew see boats with published journeys."""
        from shared.models import Boat

        _, executor, store = make_assistant()
        store.journeys["j1"].boat_id = "b1"
        executor.backend.boats.update({
            "b1": Boat(id="b1", owner_id="owner1", name="Sea Breeze", make_model="Hallberg-Rassy 42"),
            "b2": Boat(id="b2", owner_id="owner1", name="Spare", make_model="Bavaria 46"),
        })

        crew = await executor.execute(ToolCall(id="c1", name="fetch_all_boats"), CREW)
        owner = await executor.execute(
            ToolCall(id="c2", name="fetch_all_boats", arguments={"makeModel": "bavaria"}), OWNER
        )

        assert [b["id"] for b in crew.data["boats"]] == ["b1"]
        assert [b["id"] for b in owner.data["boats"]] == ["b2"]

    @pytest.mark.asyncio
    async def test_profile_completion_status(self):
        _, executor, store = make_assistant()
        store.profiles["crew1"].skills = ["Navigation"]

        result = await executor.execute(ToolCall(id="c1", name="get_profile_completion_status"), CREW)

        assert result.data["filled_fields"] == ["full_name", "skills"]
        assert result.data["missing_fields"] == ["user_description", "experience_level", "risk_level"]
        assert result.data["completion_percentage"] == 40

    @pytest.mark.asyncio
    async def test_sailing_preferences_suggestion_needs_approval(self):
        _, executor, _ = make_assistant()
        arguments = {"reason": "Owners look for this", "suggestedField": "sailing_preferences"}

        pending = await executor.execute(
            ToolCall(id="c1", name="suggest_profile_update_sailing_preferences", arguments=dict(arguments)), CREW
        )
        accepted = await executor.execute(
            ToolCall(id="c2", name="suggest_profile_update_sailing_preferences", arguments=dict(arguments)),
            CREW,
            approved=True,
        )

        assert pending.status == ToolResultStatus.PENDING_APPROVAL
        assert pending.data["label"] == "Update sailing preferences"
        assert accepted.status == ToolResultStatus.SUCCESS
        assert executor.backend.accepted_suggestions[0]["suggestedField"] == "sailing_preferences"


class TestConversationOrchestrator:
    """Tests for the bounded tool loop."""

    @pytest.mark.asyncio
    async def test_location_search_and_citation_filtering(self):
        from gateway import MockProvider

        provider = MockProvider("mock", responses=[
            tool_block(
                "search_legs_by_location",
                departureBbox={"minLng": -18.5, "minLat": 27.0, "maxLng": -13.0, "maxLat": 29.5},
            ),
            f"Try [[leg:{LEG_ID}:Las Palmas to Mindelo]] or [[leg:{FAKE_LEG_ID}:Sunset Cruise]].",
        ])
        orchestrator, _, _ = make_assistant(provider)

        result = await orchestrator.process_message("Any legs leaving the Canary Islands?", ANONYMOUS)

        assert result.iterations == 2
        assert not result.truncated
        assert f"[[leg:{LEG_ID}:Las Palmas to Mindelo]]" in result.content
        assert "Sunset Cruise" in result.content
        assert FAKE_LEG_ID not in result.content
        assert result.removed_citations == 1
        assert [ref.id for ref in result.leg_references] == [LEG_ID]
        assert result.messages[-1].metadata.leg_references[0].name == "Las Palmas to Mindelo"

        first_prompt = provider.call_history[0]["prompt"]
        assert "Canary Islands" in first_prompt
        assert '"minLng": -18.5' in first_prompt
        second_prompt = provider.call_history[1]["prompt"]
        assert "Tool search_legs_by_location result:" in second_prompt

    @pytest.mark.asyncio
    async def test_citation_from_history_stays_valid(self):
        from gateway import MockProvider
        from shared.models import ConversationMessage, LegReference, MessageMetadata

        history = [
            ConversationMessage(role="user", content="find me a leg"),
            ConversationMessage(
                role="assistant",
                content="Found one.",
                metadata=MessageMetadata(leg_references=[LegReference(id=LEG_ID, name="Las Palmas to Mindelo")]),
            ),
        ]
        provider = MockProvider("mock", responses=[f"It is [[leg:{LEG_ID.upper()}:Las Palmas to Mindelo]]."])
        orchestrator, _, _ = make_assistant(provider)

        result = await orchestrator.process_message("remind me?", ANONYMOUS, history=history)

        assert result.removed_citations == 0
        assert "find me a leg" in provider.call_history[0]["prompt"]

    @pytest.mark.asyncio
    async def test_empty_search_adds_no_invention_hint(self):
        from gateway import MockProvider

        provider = MockProvider("mock", responses=[
            tool_block("search_legs", startDate="2030-01-01"),
            "Here are some legs you could try: a 10-day Caribbean trip.",
        ])
        orchestrator, _, _ = make_assistant(provider)

        result = await orchestrator.process_message("legs in 2030?", ANONYMOUS)

        assert "Do NOT make up or invent legs" in provider.call_history[1]["prompt"]
        assert result.hallucination_suspected is True
        assert result.leg_references == []

    @pytest.mark.asyncio
    async def test_loop_stops_at_iteration_limit(self):
        from gateway import MockProvider

        provider = MockProvider("mock", default=tool_block("get_experience_level_definitions"))
        orchestrator, _, _ = make_assistant(provider)

        result = await orchestrator.process_message("what levels exist?", ANONYMOUS)

        assert result.truncated is True
        assert result.iterations == 5
        assert len(provider.call_history) == 5
        assert len(result.tool_results) == 5

    @pytest.mark.asyncio
    async def test_action_pending_then_approved(self):
        from gateway import MockProvider

        provider = MockProvider("mock", responses=[
            tool_block("suggest_register_for_leg", legId=LEG_ID, reason="matches your dates"),
            "I can register you for this leg once you confirm.",
            "You're registered.",
        ])
        orchestrator, _, store = make_assistant(provider)

        first = await orchestrator.process_message("sign me up", CREW)

        assert first.pending_action is not None
        assert first.pending_action.tool_name == "suggest_register_for_leg"
        assert first.pending_action.label == "Register for leg"
        assert first.messages[-1].metadata.pending_action == first.pending_action
        assert store.registrations == {}

        second = await orchestrator.process_message(
            "yes please",
            CREW,
            history=first.messages,
            approved_action=first.pending_action,
        )

        assert second.tool_results[0].status == ToolResultStatus.SUCCESS
        assert second.content == "You're registered."
        assert second.pending_action is None
        registrations = list(store.registrations.values())
        assert len(registrations) == 1
        assert registrations[0].user_id == "crew1"
        assert registrations[0].leg_id == LEG_ID

    @pytest.mark.asyncio
    async def test_approval_must_match_pending_action(self):
        from gateway import MockProvider

        provider = MockProvider("mock", responses=[
            tool_block("suggest_register_for_leg", legId=LEG_ID, reason="matches your dates"),
            "Confirm?",
        ])
        orchestrator, _, store = make_assistant(provider)
        first = await orchestrator.process_message("sign me up", CREW)

        forged = PendingAction(
            tool_name="suggest_register_for_leg",
            arguments={"legId": FAKE_LEG_ID, "reason": "matches your dates"},
            label="Register for leg",
        )
        with pytest.raises(ToolPermissionError):
            await orchestrator.process_message("yes", CREW, history=first.messages, approved_action=forged)

        with pytest.raises(ToolPermissionError):
            await orchestrator.process_message("yes", CREW, approved_action=first.pending_action)

        assert store.registrations == {}

    @pytest.mark.asyncio
    async def test_only_one_pending_action_per_turn(self):
        from gateway import MockProvider

        calls = [
            {"name": "suggest_profile_update_certifications",
             "arguments": {"reason": "add RYA", "suggestedField": "certifications"}},
            {"name": "suggest_profile_update_user_description",
             "arguments": {"reason": "more detail", "suggestedField": "user_description"}},
        ]
        provider = MockProvider("mock", responses=[
            "```tool_call\n" + json.dumps(calls) + "\n```",
            "Two ideas for your profile.",
        ])
        orchestrator, _, _ = make_assistant(provider)

        result = await orchestrator.process_message("improve my profile", CREW)

        assert result.pending_action.tool_name == "suggest_profile_update_certifications"
        assert result.tool_results[1].status == ToolResultStatus.ERROR
        assert result.tool_results[1].error == "Only one action can await approval at a time"


class TestToolCallParsing:
    """Tests for extracting tool calls from model text."""

    def test_single_call(self):
        from assistant.toolcalls import parse_tool_calls

        calls = parse_tool_calls("Checking.\n" + tool_block("get_leg_details", legId=LEG_ID))

        assert len(calls) == 1
        assert calls[0].name == "get_leg_details"
        assert calls[0].arguments == {"legId": LEG_ID}

    def test_trailing_comma_repaired(self):
        from assistant.toolcalls import parse_tool_calls

        text = '```tool_call\n{"name": "search_legs", "arguments": {"limit": 5,},}\n```'
        calls = parse_tool_calls(text)

        assert calls[0].arguments == {"limit": 5}

    def test_unterminated_block_repaired(self):
        from assistant.toolcalls import parse_tool_calls

        text = 'Let me look.\n```tool_call\n{"name": "search_legs", "arguments": {"skills": ["Navigation"'
        calls = parse_tool_calls(text)

        assert calls[0].arguments == {"skills": ["Navigation"]}

    def test_wrapped_list_and_string_parameters(self):
        from assistant.toolcalls import parse_tool_calls

        payload = {"tool_calls": [
            {"name": "get_journey_details", "parameters": '{"journeyId": "j1"}'},
            {"name": "get_boat_details", "arguments": {"boatId": "b1"}},
        ]}
        calls = parse_tool_calls("```json\n" + json.dumps(payload) + "\n```")

        assert [c.name for c in calls] == ["get_journey_details", "get_boat_details"]
        assert calls[0].arguments == {"journeyId": "j1"}
        assert calls[0].id != calls[1].id

    def test_plain_text_has_no_calls(self):
        from assistant.toolcalls import parse_tool_calls

        assert parse_tool_calls("No tools needed, enjoy the sail!") == []
        assert parse_tool_calls('```json\n{"score": 3}\n```') == []

    def test_strip_tool_blocks(self):
        from assistant.toolcalls import strip_tool_blocks

        assert strip_tool_blocks("One moment.\n" + tool_block("search_legs")) == "One moment."


class TestCitations:
    """Tests for leg citation checks."""

    def test_filter_keeps_valid_and_strips_invalid(self):
        from assistant.citations import filter_leg_citations, format_leg_citation

        content = f"{format_leg_citation(LEG_ID, 'Real Leg')} and {format_leg_citation(FAKE_LEG_ID, 'Made Up')}"
        filtered, removed = filter_leg_citations(content, [LEG_ID])

        assert filtered == f"[[leg:{LEG_ID}:Real Leg]] and Made Up"
        assert removed == 1

    def test_hallucination_heuristic(self):
        from assistant.citations import detect_plain_text_hallucination

        text = "I found some great sailing legs for you."
        assert detect_plain_text_hallucination(text, has_valid_legs=False)
        assert not detect_plain_text_hallucination(text, has_valid_legs=True)
        assert not detect_plain_text_hallucination("Fair winds!", has_valid_legs=False)

    def test_bulleted_duration_lines_flagged(self):
        from assistant.citations import detect_plain_text_hallucination

        text = "Options:\n- Mediterranean Breeze - 7 Days\n• Aegean Hop – 10 days"
        assert detect_plain_text_hallucination(text, has_valid_legs=False)
        assert not detect_plain_text_hallucination("- Mediterranean Breeze", has_valid_legs=False)


class TestGazetteer:
    """Tests for region lookup."""

    def test_region_name_match(self):
        from assistant.gazetteer import get_location_bbox

        region = get_location_bbox("Sailing around the Canary Islands in winter")

        assert region.name == "Canary Islands"
        assert region.bbox.as_dict() == {"minLng": -18.5, "minLat": 27.0, "maxLng": -13.0, "maxLat": 29.5}

    def test_alias_needs_word_boundary(self):
        from assistant.gazetteer import find_mentioned_regions

        assert [r.name for r in find_mentioned_regions("Berth in Nice, please")] == ["French Riviera"]
        assert find_mentioned_regions("That sounds nicely planned") == []

    def test_longest_term_first(self):
        from assistant.gazetteer import search_location

        matches = search_location("Greek Islands or the Med")

        assert matches[0].region.name == "Greek Islands"
        assert matches[0].matched_on == "name"
        assert matches[1].matched_term == "med"

    def test_categories_and_listing(self):
        from assistant.gazetteer import get_categories, list_regions

        assert get_categories() == [
            "mediterranean", "atlantic", "caribbean", "northern_europe", "pacific", "indian_ocean",
        ]
        assert {r.name for r in list_regions("indian_ocean")} == {
            "Seychelles", "Maldives", "Thailand Andaman Coast",
        }


class TestToolAuditLogger:
    """Tests for the audit trail."""

    @pytest.mark.asyncio
    async def test_redacts_and_persists(self, tmp_path):
        from assistant.audit import ToolAuditLogger

        audit = ToolAuditLogger(log_path=str(tmp_path / "audit.log"), buffer_size=1)
        call = ToolCall(id="c1", name="submit_leg_registration", arguments={
            "legId": LEG_ID,
            "password": "hunter2",
            "answers": [{"requirement_id": "p1", "photo": "aGVsbG8="}],
        })
        result = ToolResult(tool_call_id="c1", name=call.name, status=ToolResultStatus.PENDING_APPROVAL)

        await audit.log(call, result, CREW, conversation_id="conv1")
        entries = await audit.query(user_id="crew1")

        assert len(entries) == 1
        assert entries[0].arguments["password"] == "[REDACTED]"
        assert entries[0].arguments["answers"][0]["photo"] == "[BINARY]"
        assert entries[0].arguments["legId"] == LEG_ID
        assert entries[0].conversation_id == "conv1"

    @pytest.mark.asyncio
    async def test_disabled_logger_writes_nothing(self, tmp_path):
        from assistant.audit import ToolAuditLogger

        path = tmp_path / "audit.log"
        audit = ToolAuditLogger(log_path=str(path), enabled=False, buffer_size=1)
        call = ToolCall(id="c1", name="search_legs")

        await audit.log(call, ToolResult(tool_call_id="c1", name="search_legs", status=ToolResultStatus.SUCCESS), CREW)

        assert not path.exists()


class TestChatSessionStore:
    """Tests for server-side chat history."""

    @pytest.mark.asyncio
    async def test_title_from_first_user_message(self):
        from assistant import ChatSessionStore
        from shared.models import ConversationMessage

        sessions = ChatSessionStore()
        session = await sessions.create(CREW)
        message = "I would like to crew on an Atlantic crossing next winter if possible"

        await sessions.append(session.id, [
            ConversationMessage(role="user", content=message),
            ConversationMessage(role="assistant", content="Sure"),
        ])

        assert session.title == message[:50]
        assert len(session.title) == 50

    @pytest.mark.asyncio
    async def test_sessions_are_scoped_to_their_user(self):
        from assistant import ChatSessionStore

        sessions = ChatSessionStore()
        session = await sessions.create(CREW)

        assert await sessions.get(session.id, CREW) is session
        assert await sessions.get(session.id, OWNER) is None

        other = await sessions.get_or_create(session.id, OWNER)
        assert other.id != session.id

    @pytest.mark.asyncio
    async def test_expired_sessions_cleaned_up(self):
        from assistant import ChatSessionStore

        sessions = ChatSessionStore(session_ttl_minutes=-1)
        await sessions.create(CREW)

        assert await sessions.cleanup_expired() == 1
