"""
Tool Registry

Name -> ToolSpec catalog. The process-wide default registry is built
once, on first use, and frozen afterwards.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional

from codexagent.core.tools.base import ToolSpec

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Central registry of tools. Registration after ``freeze()`` is an
    error so the catalog cannot change while workflows run.
    """

    def __init__(self, specs: Optional[Iterable[ToolSpec]] = None):
        self._tools: Dict[str, ToolSpec] = {}
        self._frozen = False
        for spec in specs or ():
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if self._frozen:
            raise RuntimeError(f"Tool registry is frozen; cannot register '{spec.name}'")
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        if not isinstance(spec.requires_approval, bool):
            raise ValueError(f"Tool '{spec.name}' must declare requires_approval")
        self._tools[spec.name] = spec
        logger.debug(f"Registered tool: {spec.name}")

    def freeze(self) -> "ToolRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def specs(self) -> List[ToolSpec]:
        return list(self._tools.values())

    def requires_approval(self, name: str) -> bool:
        spec = self._tools.get(name)
        return bool(spec and spec.requires_approval)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


_default_registry: Optional[ToolRegistry] = None
_default_lock = threading.Lock()


def default_registry() -> ToolRegistry:
    """The frozen built-in catalog, created on first call."""
    global _default_registry
    if _default_registry is None:
        with _default_lock:
            if _default_registry is None:
                from codexagent.core.tools.builtin import BUILTIN_TOOLS

                _default_registry = ToolRegistry(BUILTIN_TOOLS).freeze()
                logger.info(f"Tool registry initialized with {len(_default_registry)} tools")
    return _default_registry
