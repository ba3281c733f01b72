"""Tool executor for the assistant.

Every model-requested call passes through here:
lookup, access check against the real caller, argument validation, the
approval gate for action tools, execution and audit.
"""

import time
from typing import Optional

from shared.errors import DataIntegrityError, SailMatchError, ToolPermissionError
from shared.logging import get_logger
from shared.models import ToolCall, ToolResult, ToolResultStatus, UserContext
from assistant.audit import ToolAuditLogger
from assistant.auth import authorize_request
from assistant.backend import ToolBackend
from assistant.registry import ToolRegistry

logger = get_logger(__name__)

PENDING_MESSAGE = "Action suggested and pending user approval"


class ToolExecutor:
    """Runs tool calls for one caller; never trusts the model's choice of tool."""

    def __init__(
        self,
        registry: ToolRegistry,
        backend: ToolBackend,
        audit_logger: Optional[ToolAuditLogger] = None
    ) -> None:
        self.registry = registry
        self.backend = backend
        self.audit_logger = audit_logger

    async def execute(
        self,
        call: ToolCall,
        user: UserContext,
        approved: bool = False,
        conversation_id: Optional[str] = None
    ) -> ToolResult:
        """
        Execute one tool call.

        Args:
            call: Parsed tool call; its arguments are normalized in place
            user: The caller as resolved from the request
            approved: True only when the caller approved this exact action
            conversation_id: For the audit trail

        Returns:
            Tool result; failures are reported in the result, never raised
        """
        start_time = time.time()

        tool = self.registry.get(call.name)
        if not tool:
            result = ToolResult(
                tool_call_id=call.id,
                name=call.name,
                status=ToolResultStatus.NOT_FOUND,
                error=f"Tool '{call.name}' not found",
            )
            await self._audit(call, result, user, conversation_id)
            return result

        authorized, auth_error = authorize_request(tool, user)
        if not authorized:
            logger.warning("Tool call rejected", tool=call.name, user=user.user_id, reason=auth_error)
            result = ToolResult(
                tool_call_id=call.id,
                name=call.name,
                status=ToolResultStatus.UNAUTHORIZED,
                error=auth_error or "Unauthorized",
            )
            await self._audit(call, result, user, conversation_id)
            return result

        call.arguments = self.registry.normalize_input(tool, call.arguments)
        is_valid, errors = self.registry.validate_input(tool.name, call.arguments)
        if not is_valid:
            result = ToolResult(
                tool_call_id=call.id,
                name=call.name,
                status=ToolResultStatus.VALIDATION_ERROR,
                error=f"Validation failed: {'; '.join(errors)}",
            )
            await self._audit(call, result, user, conversation_id)
            return result

        if tool.is_action and not approved:
            result = ToolResult(
                tool_call_id=call.id,
                name=call.name,
                status=ToolResultStatus.PENDING_APPROVAL,
                data={"message": PENDING_MESSAGE, "label": tool.label or tool.name},
            )
            await self._audit(call, result, user, conversation_id)
            return result

        try:
            data = await self.backend.execute(tool.name, call.arguments, user)
            result = ToolResult(
                tool_call_id=call.id,
                name=call.name,
                status=ToolResultStatus.SUCCESS,
                data=data,
            )
        except ToolPermissionError as e:
            result = ToolResult(
                tool_call_id=call.id,
                name=call.name,
                status=ToolResultStatus.UNAUTHORIZED,
                error=e.reason,
            )
        except DataIntegrityError as e:
            result = ToolResult(
                tool_call_id=call.id,
                name=call.name,
                status=ToolResultStatus.NOT_FOUND,
                error=str(e),
            )
        except SailMatchError as e:
            result = ToolResult(
                tool_call_id=call.id,
                name=call.name,
                status=ToolResultStatus.ERROR,
                error=str(e),
            )
        except Exception as e:
            logger.error(
                "Tool execution failed",
                tool=call.name,
                error=str(e),
                exc_info=True
            )
            result = ToolResult(
                tool_call_id=call.id,
                name=call.name,
                status=ToolResultStatus.ERROR,
                error=str(e),
            )

        result.execution_time_ms = (time.time() - start_time) * 1000
        await self._audit(call, result, user, conversation_id)
        return result

    async def _audit(
        self,
        call: ToolCall,
        result: ToolResult,
        user: UserContext,
        conversation_id: Optional[str]
    ) -> None:
        if self.audit_logger is not None:
            await self.audit_logger.log(call, result, user, conversation_id)
