from shared.clients.host.HostSessionInterface import HostSessionInterface
from shared.models.memory import ChatMessage


class HostSessionMemory(HostSessionInterface):
    """
    In-memory host session.

    Used by the HTTP API, where every request carries the current chat, and by
    the tests. Substitution replaces {{user}} and {{char}} with the configured names.
    """

    def __init__(self, chat_id: str | None = None, messages: list[ChatMessage] | None = None, user_name: str = "User", char_name: str = "Character", group_chat: bool = False):
        self.chat_id = chat_id
        self.messages: list[ChatMessage] = list(messages or [])
        self.user_name = user_name
        self.char_name = char_name
        self.group_chat = group_chat
        self.generating = False
        self.extension_prompts: dict[str, dict] = {}

    def load_chat(self, chat_id: str | None, messages: list[ChatMessage]) -> None:
        """
        Replaces the current chat, as when the user switches conversation.
        """
        self.chat_id = chat_id
        self.messages = list(messages)

    def add_message(self, text: str, is_user: bool = False, is_system: bool = False, name: str | None = None) -> ChatMessage:
        message = ChatMessage(text=text, is_user=is_user, is_system=is_system, name=name, index=len(self.messages))
        self.messages.append(message)
        return message

    def get_messages(self) -> list[ChatMessage]:
        return list(self.messages)

    def get_chat_id(self) -> str | None:
        return self.chat_id

    def substitute(self, text: str) -> str:
        return text.replace("{{user}}", self.user_name).replace("{{char}}", self.char_name)

    def is_generating(self) -> bool:
        return self.generating

    def is_group_chat(self) -> bool:
        return self.group_chat

    def set_extension_prompt(self, tag: str, text: str, position: int, depth: int) -> None:
        self.extension_prompts[tag] = {"text": text, "position": position, "depth": depth}

    def clear_extension_prompt(self, tag: str) -> None:
        self.extension_prompts.pop(tag, None)

    def get_extension_prompt(self, tag: str) -> str:
        return self.extension_prompts.get(tag, {}).get("text", "")
