"""Abstract base class for execution stores."""

from abc import ABC, abstractmethod

from .core import Message, ThreadSummary


class ExecutionStore(ABC):
    """Boundary to the live agent-run service.

    Each backend (in-memory, LangGraph server) implements this interface.
    Thread ids here are execution-native ids. ``get_messages`` raises
    ``threadsync.errors.NotFound`` for unknown threads.
    """

    name: str  # "memory", "langgraph"

    @abstractmethod
    async def get_messages(self, thread_id: str) -> list[Message]:
        """Return the thread's current message list (the subscription snapshot)."""
        ...

    @abstractmethod
    async def get_files(self, thread_id: str) -> dict[str, str]:
        """Return the thread's ``{path: content}`` file set."""
        ...

    @abstractmethod
    async def submit(self, thread_id: str | None, message: Message) -> str:
        """Submit a user message; a ``None`` thread id starts a new thread.

        Returns the execution id the message was submitted to.
        """
        ...

    @abstractmethod
    async def create_thread(self, assistant_id: str) -> str:
        """Create an empty execution thread and return its id."""
        ...

    @abstractmethod
    async def update_state(
        self,
        thread_id: str,
        messages: list[Message] | None = None,
        files: dict[str, str] | None = None,
    ) -> None:
        """Overwrite parts of the thread state."""
        ...

    @abstractmethod
    async def search(
        self, limit: int, offset: int, status: str | None = None
    ) -> list[ThreadSummary]:
        """Return a page of thread summaries, most recently updated first."""
        ...

    async def aclose(self) -> None:
        """Release any held resources."""
