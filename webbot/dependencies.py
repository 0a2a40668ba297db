"""Dependency injection providers for FastAPI."""

from webbot.agent.graph import AgentRunner

# Global singleton instance (safe for async contexts; holds no per-request state)
_agent_runner: AgentRunner | None = None


def get_agent_runner() -> AgentRunner:
    """Return singleton AgentRunner instance."""
    global _agent_runner
    if _agent_runner is None:
        _agent_runner = AgentRunner()
    return _agent_runner
