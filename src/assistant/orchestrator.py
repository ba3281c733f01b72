"""Conversation orchestrator for the sailing assistant.

One request runs a bounded loop:

1. Build the prompt (system prompt, recent history, the new message)
2. Call the gateway
3. Parse an embedded tool-call block; none means the text is the answer
4. Execute the calls sequentially, feed the results back, repeat

Action tools never run on the model's say-so. They come back as a
PendingAction and only run when the caller resubmits that exact action as
approved in a later request.
"""

import json
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, Field

from shared.config import AssistantSettings
from shared.errors import ToolPermissionError
from shared.logging import get_logger
from shared.models import (
    ConversationMessage,
    LegReference,
    MessageMetadata,
    PendingAction,
    ToolCall,
    ToolResult,
    ToolResultStatus,
    UserContext,
)
from assistant.catalogue import LEG_SEARCH_TOOLS
from assistant.citations import detect_plain_text_hallucination, filter_leg_citations
from assistant.executor import ToolExecutor
from assistant.gazetteer import Region, find_mentioned_regions
from assistant.registry import ToolRegistry
from assistant.toolcalls import parse_tool_calls, strip_tool_blocks
from gateway.gateway import AIGateway

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are the SailMatch assistant. You help sailors find legs to crew on, \
understand requirements and manage their profile and registrations.

Today is {today}. The user is {who}.

Rules:
- Only state facts that came back from a tool. Never invent legs, journeys, boats or dates.
- When you mention a leg returned by a tool, cite it as [[leg:LEG_ID:Leg name]].
- Action tools only propose a change; the user must approve it before anything happens.

To use tools, reply with exactly one fenced block and nothing after it:
```tool_call
{{"name": "tool_name", "arguments": {{"argName": "value"}}}}
```
Use a JSON list inside the block to call several tools at once.

Available tools:
{tools}"""

LOCATION_CONTEXT = """
Location context (copy these bounding boxes exactly into departureBbox/arrivalBbox):
{regions}"""

RESULTS_FOOTER = (
    "Please provide your response to the user based on these results. "
    "Use only the data above."
)
NO_LEGS_HINT = (
    "No legs matched this search. Do NOT make up or invent legs; tell the user "
    "nothing matched and suggest widening the dates or area."
)
CITE_LEGS_HINT = "Cite each leg you mention as [[leg:LEG_ID:Leg name]] using the id and name above."


class ChatResult(BaseModel):
    """Outcome of one assistant turn."""
    content: str
    messages: list[ConversationMessage] = Field(default_factory=list)
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)
    leg_references: list[LegReference] = Field(default_factory=list)
    pending_action: Optional[PendingAction] = None
    iterations: int = 0
    truncated: bool = False
    removed_citations: int = 0
    hallucination_suspected: bool = False


def flatten_messages(messages: list[ConversationMessage]) -> str:
    return "\n\n".join(f"{m.role}: {m.content}" for m in messages)


def format_location_context(regions: list[Region]) -> str:
    if not regions:
        return ""
    lines = [f"- {r.name}: {json.dumps(r.bbox.as_dict())}" for r in regions]
    return LOCATION_CONTEXT.format(regions="\n".join(lines))


def find_legs(data: Any) -> list[dict[str, Any]]:
    """Every leg-shaped dict under a `leg` or `legs` key, at any depth."""
    legs: list[dict[str, Any]] = []

    def is_leg(value: Any) -> bool:
        return isinstance(value, dict) and isinstance(value.get("id"), str) and "name" in value

    def walk(value: Any) -> None:
        if isinstance(value, dict):
            for key, item in value.items():
                if key == "leg" and is_leg(item):
                    legs.append(item)
                elif key == "legs" and isinstance(item, list):
                    legs.extend(leg for leg in item if is_leg(leg))
                walk(item)
        elif isinstance(value, list):
            for item in value:
                walk(item)

    walk(data)
    return legs


def format_tool_results(results: list[ToolResult]) -> str:
    blocks = []
    for result in results:
        if result.status in (ToolResultStatus.SUCCESS, ToolResultStatus.PENDING_APPROVAL):
            block = f"Tool {result.name} result:\n{json.dumps(result.data, default=str, indent=2)}"
            if result.name in LEG_SEARCH_TOOLS and result.ok:
                block += "\n" + (CITE_LEGS_HINT if find_legs(result.data) else NO_LEGS_HINT)
            blocks.append(block)
        else:
            blocks.append(f"Tool {result.name} error: {result.error}")

    blocks.append(RESULTS_FOOTER)
    return "\n\n".join(blocks)


def latest_pending_action(history: list[ConversationMessage]) -> Optional[PendingAction]:
    for message in reversed(history):
        if message.role == "assistant":
            return message.metadata.pending_action
    return None


class ConversationOrchestrator:
    """Runs assistant turns against the gateway and the tool executor."""

    def __init__(
        self,
        gateway: AIGateway,
        registry: ToolRegistry,
        executor: ToolExecutor,
        settings: Optional[AssistantSettings] = None
    ) -> None:
        self.gateway = gateway
        self.registry = registry
        self.executor = executor
        self.settings = settings or AssistantSettings()

    def build_system_prompt(self, user: UserContext, regions: list[Region]) -> str:
        if user.authenticated:
            who = f"signed in as {user.username or user.user_id} (roles: {', '.join(user.roles) or 'none'})"
        else:
            who = "not signed in; only public tools are available"

        prompt = SYSTEM_PROMPT.format(
            today=date.today().isoformat(),
            who=who,
            tools=self.registry.describe_for_prompt(user),
        )
        return prompt + format_location_context(regions)

    async def process_message(
        self,
        message: str,
        user: UserContext,
        history: Optional[list[ConversationMessage]] = None,
        approved_action: Optional[PendingAction] = None,
        conversation_id: Optional[str] = None
    ) -> ChatResult:
        """
        Run one assistant turn.

        Args:
            message: The user's new message
            user: The caller as resolved from the request
            history: Earlier turns of this conversation, oldest first
            approved_action: A pending action the caller approved; must equal
                the one proposed by the latest assistant turn
            conversation_id: For logging and the audit trail

        Raises:
            ToolPermissionError: If `approved_action` was not proposed by the latest turn
            ConfigurationError: If the chat use case has no providers
            AllProvidersFailedError: If every provider failed
        """
        history = history or []
        log = logger.bind(conversation_id=conversation_id, user=user.user_id)

        regions = find_mentioned_regions(message)
        if regions:
            log.debug("Locations resolved", regions=[r.name for r in regions])

        recent = [m for m in history if m.role != "system"][-self.settings.max_history_messages:]
        user_message = ConversationMessage(role="user", content=message)
        messages = [
            ConversationMessage(role="system", content=self.build_system_prompt(user, regions)),
            *recent,
            user_message,
        ]

        valid_leg_ids = {ref.id for m in history for ref in m.metadata.leg_references}
        leg_references: dict[str, LegReference] = {}
        tool_calls: list[ToolCall] = []
        tool_results: list[ToolResult] = []

        if approved_action is not None:
            result = await self._run_approved_action(approved_action, history, user, conversation_id)
            tool_results.append(result)
            valid_leg_ids.update(leg["id"] for leg in find_legs(result.data))
            messages.append(ConversationMessage(
                role="user",
                content=f"The user approved the action '{approved_action.label}'.\n\n"
                        + format_tool_results([result]),
            ))

        pending_action: Optional[PendingAction] = None
        content = ""
        iterations = 0
        truncated = True

        for iterations in range(1, self.settings.max_tool_iterations + 1):
            response = await self.gateway.call_ai(self.settings.use_case, flatten_messages(messages))
            calls = parse_tool_calls(response.text)

            if not calls:
                content = response.text.strip()
                truncated = False
                break

            content = strip_tool_blocks(response.text)
            messages.append(ConversationMessage(role="assistant", content=response.text))
            log.info("Tool calls requested", iteration=iterations, tools=[c.name for c in calls])

            results = []
            for call in calls:
                result = await self.executor.execute(call, user, conversation_id=conversation_id)

                if result.status == ToolResultStatus.PENDING_APPROVAL:
                    if pending_action is None:
                        pending_action = PendingAction(
                            tool_name=call.name,
                            arguments=call.arguments,
                            label=result.data["label"],
                        )
                    else:
                        result = result.model_copy(update={
                            "status": ToolResultStatus.ERROR,
                            "data": None,
                            "error": "Only one action can await approval at a time",
                        })

                legs = find_legs(result.data) if result.ok else []
                valid_leg_ids.update(leg["id"] for leg in legs)
                if call.name in LEG_SEARCH_TOOLS:
                    for leg in legs:
                        if len(leg_references) < self.settings.max_leg_references:
                            leg_references.setdefault(leg["id"], LegReference(
                                id=leg["id"],
                                name=leg["name"],
                                journey_name=leg.get("journey_name"),
                            ))

                tool_calls.append(call)
                results.append(result)

            tool_results.extend(results)
            messages.append(ConversationMessage(role="user", content=format_tool_results(results)))

        if truncated:
            log.warning("Tool loop stopped at iteration limit", iterations=iterations)

        content, removed = filter_leg_citations(content, valid_leg_ids)
        if removed:
            log.warning("Removed citations to legs not returned by tools", removed=removed)

        suspected = detect_plain_text_hallucination(content, bool(valid_leg_ids))
        if suspected:
            log.warning("Reply may describe legs that no tool returned")

        assistant_message = ConversationMessage(
            role="assistant",
            content=content,
            metadata=MessageMetadata(
                tool_calls=tool_calls,
                leg_references=list(leg_references.values()),
                pending_action=pending_action,
            ),
        )

        return ChatResult(
            content=content,
            messages=[user_message, assistant_message],
            tool_calls=tool_calls,
            tool_results=tool_results,
            leg_references=list(leg_references.values()),
            pending_action=pending_action,
            iterations=iterations,
            truncated=truncated,
            removed_citations=removed,
            hallucination_suspected=suspected,
        )

    async def _run_approved_action(
        self,
        approved: PendingAction,
        history: list[ConversationMessage],
        user: UserContext,
        conversation_id: Optional[str]
    ) -> ToolResult:
        proposed = latest_pending_action(history)
        call = ToolCall(id=f"approved-{approved.tool_name}", name=approved.tool_name, arguments=approved.arguments)

        if proposed is None or not proposed.matches(call):
            logger.warning(
                "Approved action does not match the pending action",
                conversation_id=conversation_id,
                tool=approved.tool_name
            )
            raise ToolPermissionError(approved.tool_name, "this action is not awaiting approval")

        logger.info("Executing approved action", conversation_id=conversation_id, tool=approved.tool_name)
        return await self.executor.execute(call, user, approved=True, conversation_id=conversation_id)
