"""Host and guest ends of the llm:* request protocol."""

from ayo_offline.rpc.client import GenerationOutcome, OutcomeStatus, RPCClient
from ayo_offline.rpc.host import RPCHost

__all__ = ["RPCHost", "RPCClient", "GenerationOutcome", "OutcomeStatus"]
