"""Guest runtime adapters and the console bridge that serves them."""

from ayo_offline.emulator.bridge import ConsoleBridge
from ayo_offline.emulator.engine import EngineStatus, ExecutionEngine, SubprocessEngine

__all__ = ["ConsoleBridge", "ExecutionEngine", "EngineStatus", "SubprocessEngine"]
