"""
File: registry.py
Purpose: Capability contract and the immutable name -> capability registry.

Schemas follow the OpenAI function-calling / MCP ``inputSchema`` shape.
The registry is built once at startup and never mutated afterwards.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional


@dataclass(frozen=True)
class InvocationContext:
    """Caller identity forwarded by the hosting platform."""
    user_id: Optional[str] = None
    principal: Optional[str] = None
    request_id: Optional[str] = None


class Capability(ABC):
    """A named operation with a parameter schema, discoverable via ``list``."""

    name: str = ""
    description: str = ""
    input_schema: Dict[str, Any] = {"type": "object", "properties": {}}

    @abstractmethod
    async def execute(self, arguments: Dict[str, Any], context: InvocationContext) -> Any:
        """Run the capability; raise on failure."""

    @property
    def required(self) -> List[str]:
        return list(self.input_schema.get("required", []))

    def describe(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


class CapabilityRegistry(Mapping[str, Capability]):
    """Read-only mapping preserving registration order."""

    def __init__(self, capabilities: Iterable[Capability]):
        entries: Dict[str, Capability] = {}
        for capability in capabilities:
            if not capability.name:
                raise ValueError(f"Capability {type(capability).__name__} has no name")
            if capability.name in entries:
                raise ValueError(f"Duplicate capability name: {capability.name}")
            entries[capability.name] = capability
        self._entries = MappingProxyType(entries)

    def __getitem__(self, name: str) -> Capability:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def describe(self) -> List[Dict[str, Any]]:
        return [c.describe() for c in self._entries.values()]
