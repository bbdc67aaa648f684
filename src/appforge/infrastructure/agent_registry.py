from __future__ import annotations

from threading import RLock
from typing import Callable, Dict, Optional

from ..agents.code_generator import CodeGenAgentStub, CodeGeneratorAgent


AgentFactory = Callable[[str], CodeGenAgentStub]


class AgentRegistry:
    """In-process stand-in for the remote actor namespace: one agent per id."""

    def __init__(self, factory: Optional[AgentFactory] = None) -> None:
        self._factory: AgentFactory = factory or CodeGeneratorAgent
        self._agents: Dict[str, CodeGenAgentStub] = {}
        self._lock = RLock()

    async def get_agent_stub(self, agent_id: str) -> CodeGenAgentStub:
        with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                agent = self._factory(agent_id)
                self._agents[agent_id] = agent
            return agent

    def get(self, agent_id: str) -> Optional[CodeGenAgentStub]:
        with self._lock:
            return self._agents.get(agent_id)

    def remove(self, agent_id: str) -> bool:
        with self._lock:
            return self._agents.pop(agent_id, None) is not None

    def __len__(self) -> int:
        return len(self._agents)


_registry: Optional[AgentRegistry] = None


def get_agent_registry() -> AgentRegistry:
    global _registry
    if _registry is None:
        _registry = AgentRegistry()
    return _registry
