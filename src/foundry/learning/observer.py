"""
Outcome observer - feeds tool-call results from the host into the engine.

Failures are recorded as they happen. A success for the same tool then
resolves that failure through the engine's open-failure rule. At the end
of a successful session that used several tools, the tool sequence is kept
as an insight.
"""

import logging

from foundry.learning.engine import LearningEngine

logger = logging.getLogger(__name__)

OWN_TOOL_PREFIX = "foundry_"
SEQUENCE_MIN_TOOLS = 3
SEQUENCE_MAX_LISTED = 5


class ToolOutcomeObserver:
    """Host hook handlers that record runtime outcomes."""

    def __init__(self, engine: LearningEngine, ignore_prefix: str = OWN_TOOL_PREFIX):
        self._engine = engine
        self._ignore_prefix = ignore_prefix
        self.last_failure_id: str | None = None

    def after_tool_call(
        self,
        tool_name: str,
        error: str | None = None,
        context: str | None = None,
    ) -> str | None:
        """
        Record the outcome of one tool call.

        Returns:
            Id of the recorded entry, or None for ignored tools
        """
        if tool_name.startswith(self._ignore_prefix):
            return None

        if error:
            entry_id = self._engine.record_failure(tool_name, error, context)
            self.last_failure_id = entry_id
            return entry_id

        entry_id = self._engine.record_success(tool_name, context)
        if self.last_failure_id:
            last = self._engine.get(self.last_failure_id)
            if last is None or last.type != "failure":
                self.last_failure_id = None
        return entry_id

    def agent_end(
        self,
        success: bool,
        tools_used: list[str],
        summary: str | None = None,
    ) -> str | None:
        """
        Keep the tool sequence of a successful multi-tool session.

        Also forgets the failure being tracked for the session.

        Returns:
            Id of the recorded insight, if any
        """
        self.last_failure_id = None
        if not success or len(tools_used) < SEQUENCE_MIN_TOOLS:
            return None
        sequence = " → ".join(tools_used[:SEQUENCE_MAX_LISTED])
        return self._engine.record_insight(f"Successful tool sequence: {sequence}", summary)
