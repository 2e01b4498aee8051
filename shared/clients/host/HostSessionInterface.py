from abc import ABC, abstractmethod

from shared.models.memory import ChatMessage

# tag of the extension prompt slot written by the retrieval pipeline
EXTENSION_PROMPT_TAG = "3_chat_memory"


class HostSessionInterface(ABC):
    """
    The host chat/session store.

    Supplies the live message sequence and the chat identity, applies the
    host's text substitutions, and owns the extension prompt slot that
    retrieved memories are injected into.
    """

    @abstractmethod
    def get_messages(self) -> list[ChatMessage]:
        """
        Returns the live ordered message sequence, oldest first.
        """
        pass

    @abstractmethod
    def get_chat_id(self) -> str | None:
        """
        Returns the identifier of the current chat, or None if no chat is open.
        """
        pass

    @abstractmethod
    def substitute(self, text: str) -> str:
        """
        Applies the host's macro substitution (e.g. {{user}}, {{char}}) to a text.
        """
        pass

    @abstractmethod
    def is_generating(self) -> bool:
        """
        Returns True while a generation is in flight.
        """
        pass

    @abstractmethod
    def set_extension_prompt(self, tag: str, text: str, position: int, depth: int) -> None:
        pass

    @abstractmethod
    def clear_extension_prompt(self, tag: str) -> None:
        pass

    def is_group_chat(self) -> bool:
        return False
