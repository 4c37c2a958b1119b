from __future__ import annotations

from scholarchat.agents.orchestrator import ChatOrchestrator

_orchestrator: ChatOrchestrator | None = None


def get_orchestrator() -> ChatOrchestrator:
    """Get or create the process-wide chat orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator()
    return _orchestrator
