import logging

from learnsmart.services.ai_client import ai_chat
from learnsmart.services.prompts import load_prompt

logger = logging.getLogger(__name__)


def to_model_messages(messages: list[dict]) -> list[dict]:
    """Map client chat roles onto the model's: "user" stays, anything else is the assistant."""
    return [
        {"role": "user" if m["role"] == "user" else "assistant", "content": m["content"]}
        for m in messages
    ]


async def tutor_reply(messages: list[dict]) -> str:
    """Ask the tutor model for the next reply in a conversation.

    Always returns non-empty text; an empty model reply becomes the
    fallback sentence from tutor.yaml. Upstream failures propagate as
    AIServiceError.
    """
    prompt = load_prompt("tutor.yaml")
    chat = [{"role": "system", "content": prompt["system_prompt"]}] + to_model_messages(messages)

    text = await ai_chat(
        chat,
        use_case="tutor",
        temperature=prompt["temperature"],
        max_tokens=prompt["max_tokens"],
    )
    if not text.strip():
        logger.warning("Tutor model returned an empty reply")
        return prompt["fallback_reply"]
    return text
