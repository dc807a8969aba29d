"""
Tool registry for managing agent tools
"""

import logging
import threading
from typing import Callable, List, Optional

from .base_tool import BaseTool

logger = logging.getLogger(__name__)

ToolLoader = Callable[[], List[BaseTool]]


class ToolRegistry:
    """Registry for managing agent tools

    Tools may be supplied directly or by a loader that is called once, the
    first time the registry is consulted.
    """

    def __init__(self, tools: Optional[List[BaseTool]] = None, loader: Optional[ToolLoader] = None):
        """Initialize registry"""
        self._tools: List[BaseTool] = list(tools or [])
        self._loader = loader
        self._lock = threading.Lock()

    def _ensure_loaded(self) -> None:
        with self._lock:
            if self._loader is None:
                return
            loader, self._loader = self._loader, None
            loaded = loader()
            logger.debug(f"Loaded {len(loaded)} tools")
            self._tools = list(loaded) + self._tools

    def register(self, tool: BaseTool) -> None:
        """Register a tool in the registry"""
        self.set_tool(tool.name, tool)

    def set_tool(self, name: str, tool: BaseTool) -> None:
        """Replace the tool called `name`, or append it"""
        self._ensure_loaded()
        with self._lock:
            for i, existing in enumerate(self._tools):
                if existing.name == name:
                    self._tools[i] = tool
                    return
            self._tools.append(tool)

    def get_tool(self, name: str) -> Optional[BaseTool]:
        """Get a tool by name"""
        self._ensure_loaded()
        with self._lock:
            for tool in self._tools:
                if tool.name == name:
                    return tool
        return None

    def get_all_tools(self) -> List[BaseTool]:
        """Get all registered tools in registration order"""
        self._ensure_loaded()
        with self._lock:
            return list(self._tools)
