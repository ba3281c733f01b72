"""Audit trail of assistant tool executions.

Every tool result (including rejected and pending calls) is written as one
JSON line. Sensitive argument values and image payloads are redacted.
"""

import asyncio
import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import aiofiles

from shared.logging import get_logger
from shared.models import AuditEntry, ToolCall, ToolResult, ToolResultStatus, UserContext

logger = get_logger(__name__)


class ToolAuditLogger:
    """Buffered JSON-lines audit log written with aiofiles."""

    SENSITIVE_ARGS = {"password", "token", "secret", "api_key", "apikey", "credential"}
    # Base64 documents are never copied into the log
    BINARY_ARGS = {"photo", "image", "passport_image"}

    def __init__(
        self,
        log_path: str = "logs/tool_audit.log",
        enabled: bool = True,
        buffer_size: int = 20
    ) -> None:
        self.log_path = Path(log_path)
        self.enabled = enabled
        self.buffer_size = buffer_size
        self._buffer: list[AuditEntry] = []
        self._lock = asyncio.Lock()

        if self.enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def redact(self, value: Any) -> Any:
        if isinstance(value, dict):
            redacted = {}
            for key, item in value.items():
                lowered = key.lower()
                if lowered in self.SENSITIVE_ARGS:
                    redacted[key] = "[REDACTED]"
                elif lowered in self.BINARY_ARGS:
                    redacted[key] = "[BINARY]"
                else:
                    redacted[key] = self.redact(item)
            return redacted
        if isinstance(value, list):
            return [self.redact(item) for item in value]
        return value

    def create_entry(
        self,
        call: ToolCall,
        result: ToolResult,
        user: UserContext,
        conversation_id: Optional[str] = None
    ) -> AuditEntry:
        return AuditEntry(
            id=str(uuid.uuid4()),
            timestamp=datetime.utcnow(),
            conversation_id=conversation_id,
            user_id=user.user_id,
            tool_name=call.name,
            arguments=self.redact(call.arguments),
            status=result.status,
            error=result.error,
            execution_time_ms=result.execution_time_ms,
        )

    async def log(
        self,
        call: ToolCall,
        result: ToolResult,
        user: UserContext,
        conversation_id: Optional[str] = None
    ) -> None:
        if not self.enabled:
            return

        entry = self.create_entry(call, result, user, conversation_id)

        logger.info(
            "Tool executed",
            audit_id=entry.id,
            user=entry.user_id,
            tool=entry.tool_name,
            status=entry.status.value,
            execution_time_ms=entry.execution_time_ms
        )

        async with self._lock:
            self._buffer.append(entry)
            if len(self._buffer) >= self.buffer_size:
                await self._flush()

    async def _flush(self) -> None:
        if not self._buffer:
            return

        entries = self._buffer.copy()
        self._buffer.clear()

        try:
            async with aiofiles.open(self.log_path, "a") as f:
                for entry in entries:
                    await f.write(entry.model_dump_json() + "\n")
        except OSError as e:
            logger.error("Failed to write audit log", error=str(e), path=str(self.log_path))
            # Keep entries for the next flush
            self._buffer = entries + self._buffer

    async def flush(self) -> None:
        async with self._lock:
            await self._flush()

    async def query(
        self,
        user_id: Optional[str] = None,
        tool_name: Optional[str] = None,
        conversation_id: Optional[str] = None,
        status: Optional[ToolResultStatus] = None,
        limit: int = 100
    ) -> list[AuditEntry]:
        """Read back flushed entries matching every given filter."""
        results: list[AuditEntry] = []

        if not self.log_path.exists():
            return results

        async with aiofiles.open(self.log_path, "r") as f:
            async for line in f:
                if len(results) >= limit:
                    break
                try:
                    entry = AuditEntry(**json.loads(line))
                except (json.JSONDecodeError, ValueError):
                    continue

                if user_id and entry.user_id != user_id:
                    continue
                if tool_name and entry.tool_name != tool_name:
                    continue
                if conversation_id and entry.conversation_id != conversation_id:
                    continue
                if status and entry.status != status:
                    continue
                results.append(entry)

        return results
