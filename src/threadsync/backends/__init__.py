"""Execution store backends and selection."""

from ..config import get_assistant_id, get_execution_api_key, get_execution_url
from ..provider import ExecutionStore
from .langgraph import LangGraphExecutionStore
from .memory import InMemoryExecutionStore


def get_execution_store() -> ExecutionStore:
    """Return the LangGraph store when a server URL is configured, else the in-memory one."""
    url = get_execution_url()
    if url:
        return LangGraphExecutionStore(url, get_assistant_id(), get_execution_api_key())
    return InMemoryExecutionStore(assistant_id=get_assistant_id())
