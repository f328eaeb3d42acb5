from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from genie_studio.domain.enums import ChatPersona
from genie_studio.domain.errors import ValidationError
from genie_studio.domain.models import ChatMessage, ChatReply
from genie_studio.services.providers.gemini.client import GeminiClient

logger = logging.getLogger("chat_service")


@dataclass(frozen=True)
class PersonaProfile:
    instruction: str
    greeting: str
    temperature: float
    top_k: int = 40
    top_p: float = 0.7
    max_output_tokens: int = 2048

    def generation_config(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "topK": self.top_k,
            "topP": self.top_p,
            "maxOutputTokens": self.max_output_tokens,
        }


PERSONAS: Dict[ChatPersona, PersonaProfile] = {
    ChatPersona.conversation: PersonaProfile(
        instruction=(
            "You are 'Genie', a helpful AI assistant. Provide informative and concise responses. "
            "When presenting structured data (like comparisons, statistics, lists suitable for plotting), "
            "format it as a standard GitHub Flavored Markdown table whenever possible to facilitate visualization."
        ),
        greeting="Hi there! How can I assist you today? Feel free to ask me anything.",
        temperature=0.9,
    ),
    ChatPersona.code: PersonaProfile(
        instruction=(
            "You are 'Genie Code', an expert coding assistant. Your sole purpose is to provide high-quality, "
            "professional code explanations and snippets. All your responses must be related to programming, "
            "software development, or data structures. For any non-coding related questions, you must politely "
            "decline and remind the user of your purpose. When providing code, use markdown code blocks with "
            "language identifiers."
        ),
        greeting="Sounds amazing, what language or technology stack would you like to learn?",
        temperature=0.7,
    ),
}


def build_contents(profile: PersonaProfile, messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
    """
    Gemini chat history: persona instruction and greeting first, then the
    conversation with bot turns mapped to the "model" role. The last entry
    is the new user prompt.
    """
    if not messages:
        raise ValidationError("messages are required")
    if messages[-1].role != "user":
        raise ValidationError("the last message must come from the user")

    contents: List[Dict[str, Any]] = [
        {"role": "user", "parts": [{"text": profile.instruction}]},
        {"role": "model", "parts": [{"text": profile.greeting}]},
    ]
    for msg in messages:
        contents.append(
            {
                "role": "model" if msg.role == "bot" else "user",
                "parts": [{"text": msg.text}],
            }
        )
    return contents


class ChatService:
    def __init__(self, client: Optional[GeminiClient] = None) -> None:
        self.client = client or GeminiClient()

    async def reply(self, persona: ChatPersona, messages: Sequence[ChatMessage]) -> ChatReply:
        profile = PERSONAS[ChatPersona(persona)]
        contents = build_contents(profile, messages)

        result = await self.client.generate(contents, profile.generation_config())
        logger.info(
            "chat_reply",
            extra={"persona": ChatPersona(persona).value, "turns": len(messages), "finish_reason": result.finish_reason},
        )
        return ChatReply(text=result.text, persona=ChatPersona(persona), usage=result.usage)
