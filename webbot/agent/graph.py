"""LangGraph ReAct agent for the coding assistant.

Builds a prebuilt *ReAct* agent over the workspace tools and runs it to
completion for one request. The step budget bounds the number of
model/tool rounds; running out of budget is an answer, not an error.
"""

import logging
from typing import Any, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langgraph.errors import GraphRecursionError
from langgraph.prebuilt import ToolNode, create_react_agent

from webbot.agent.prompts import build_system_prompt
from webbot.agent.tools import build_tools
from webbot.agent.workspace import Workspace
from webbot.config import settings
from webbot.models.messages import AgentAnswer, ChatTurn, MessageRole, Usage

logger = logging.getLogger(__name__)

BUDGET_EXHAUSTED_MESSAGE = (
    "I've reached the maximum number of tool calls ({max_steps} steps) for this task. "
    "I've made progress, but the task may need to be broken into smaller parts. "
    "You can increase this limit by setting the AGENT_MAX_STEPS environment variable, "
    "or ask me to continue from where I left off."
)

# Reply the prebuilt ReAct agent substitutes when it runs out of remaining steps
STEP_LIMIT_REPLY = "Sorry, need more steps to process this request."


class AgentConfigurationError(RuntimeError):
    """The agent cannot run at all, e.g. provider credentials are missing."""


def format_tool_error(exc: Exception) -> str:
    """Turn a failed or invalid tool call into an observation for the model."""
    logger.info("Tool call failed: %s", exc)
    return f"Tool error: {exc}"


class AgentRunner:
    """Wraps a LangGraph ReAct agent with the workspace tools."""

    def __init__(
        self,
        llm: Optional[BaseChatModel] = None,
        *,
        workspace: Optional[Workspace] = None,
        max_steps: Optional[int] = None,
    ) -> None:
        self._llm = llm
        self._workspace = workspace or Workspace(settings.workspace_root)
        self._max_steps = max_steps or settings.agent_max_steps
        self._tools = build_tools(self._workspace)
        self._graph: Any = None

    @property
    def max_steps(self) -> int:
        return self._max_steps

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, turns: list[ChatTurn]) -> AgentAnswer:
        """Run the tool-calling loop over ``turns`` and return the final answer.

        Raises:
            AgentConfigurationError: when no model can be built.
        """
        graph = self._get_graph()
        messages = self._build_messages(turns)

        try:
            result = await graph.ainvoke(
                {"messages": messages},
                config={"recursion_limit": 2 * self._max_steps + 1},
            )
        except GraphRecursionError:
            return self._budget_exhausted()

        # Our input had len(messages) items; the agent appended its own
        new_messages: list[BaseMessage] = result["messages"][len(messages) :]

        answer = ""
        for msg in reversed(new_messages):
            if isinstance(msg, AIMessage) and msg.content:
                answer = _content_text(msg.content)
                break

        usage = self._collect_usage(new_messages)
        if answer == STEP_LIMIT_REPLY:
            return self._budget_exhausted(usage)
        logger.info(
            "Agent finished: %d new messages, %d chars answer",
            len(new_messages),
            len(answer),
        )
        return AgentAnswer(answer=answer, usage=usage)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _budget_exhausted(self, usage: Optional[Usage] = None) -> AgentAnswer:
        logger.warning("Agent step budget of %d exhausted", self._max_steps)
        return AgentAnswer(
            answer=BUDGET_EXHAUSTED_MESSAGE.format(max_steps=self._max_steps),
            usage=usage,
        )

    def _get_graph(self) -> Any:
        if self._graph is None:
            llm = self._llm or self._build_llm()
            self._graph = create_react_agent(
                model=llm,
                tools=ToolNode(self._tools, handle_tool_errors=format_tool_error),
            )
            logger.info(
                "AgentRunner initialised with tools=%d, max_steps=%d",
                len(self._tools),
                self._max_steps,
            )
        return self._graph

    @staticmethod
    def _build_llm() -> BaseChatModel:
        if not settings.google_api_key:
            raise AgentConfigurationError(
                "Missing GOOGLE_API_KEY. Create a .env file and restart the agent server."
            )
        return ChatGoogleGenerativeAI(
            model=settings.gemini_model,
            google_api_key=settings.google_api_key,
            temperature=settings.agent_temperature,
        )

    def _build_messages(self, turns: list[ChatTurn]) -> list[BaseMessage]:
        messages: list[BaseMessage] = [
            SystemMessage(content=build_system_prompt(str(self._workspace.root)))
        ]
        for turn in turns:
            if turn.role == MessageRole.USER:
                messages.append(HumanMessage(content=turn.content))
            else:
                messages.append(AIMessage(content=turn.content))
        return messages

    @staticmethod
    def _collect_usage(messages: list[BaseMessage]) -> Optional[Usage]:
        prompt_tokens = 0
        completion_tokens = 0
        for msg in messages:
            metadata = getattr(msg, "usage_metadata", None)
            if metadata:
                prompt_tokens += metadata.get("input_tokens", 0)
                completion_tokens += metadata.get("output_tokens", 0)

        if not (prompt_tokens or completion_tokens):
            return None
        cost = (
            prompt_tokens * settings.prompt_token_price
            + completion_tokens * settings.completion_token_price
        ) / 1_000_000
        return Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_cost=cost,
        )


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)
