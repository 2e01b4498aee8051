from pydantic import BaseModel, Field

from shared.models.memory import ChatMessage


class MessageIn(BaseModel):
    text: str
    is_system: bool = False
    is_user: bool = False
    name: str | None = None
    index: int | None = None


class ChatRequest(BaseModel):
    """The host's current chat, sent with every sync and retrieve call."""

    chat_id: str
    messages: list[MessageIn] = []

    def to_messages(self) -> list[ChatMessage]:
        """Converts the messages; a missing index defaults to the list position."""
        return [
            ChatMessage(
                text=m.text,
                is_system=m.is_system,
                is_user=m.is_user,
                name=m.name,
                index=m.index if m.index is not None else position,
            )
            for position, m in enumerate(self.messages)
        ]


class SyncRequest(ChatRequest):
    batch_size: int | None = Field(default=None, ge=1)


class RetrieveRequest(ChatRequest):
    generation_type: str = "normal"


class BackendRequest(BaseModel):
    engine: str
    base_url: str
    api_key: str = ""
    collection: str = "vh_main"
    timeout: float = 30.0
