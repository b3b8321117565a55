"""One entry point for chat models: Gemini over REST, OpenAI and Anthropic via their SDKs.

    reply = await ai_chat(
        [{"role": "system", "content": "..."}, {"role": "user", "content": "What is a fraction?"}],
        use_case="tutor",
        temperature=0.7,
    )

The model comes from TUTOR_MODEL / GRADING_MODEL for those use cases, else
MODEL_NAME. A "gemini-" or "claude-" prefix picks the provider; other names
go to AI_PROVIDER. There are no retries: one attempt, and any failure is
raised as AIServiceError.
"""

import logging
from enum import Enum

import httpx

from learnsmart.config import settings

logger = logging.getLogger(__name__)

JSON_ONLY_INSTRUCTION = "Respond with a single valid JSON object and nothing else."


class AIServiceError(Exception):
    """The model provider is not configured or its call failed."""


class AIProvider(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


def model_for(use_case: str | None) -> str:
    overrides = {"tutor": settings.tutor_model, "grading": settings.grading_model}
    return overrides.get(use_case or "") or settings.model_name


def provider_for(model: str) -> AIProvider:
    name = model.lower()
    if name.startswith("gemini-"):
        return AIProvider.GEMINI
    if name.startswith("claude-"):
        return AIProvider.ANTHROPIC
    try:
        return AIProvider(settings.ai_provider.lower())
    except ValueError:
        return AIProvider.OPENAI


def split_system(messages: list[dict]) -> tuple[str, list[dict]]:
    """Pull system turns out into one block of text; the rest keep their order."""
    system = [m["content"] for m in messages if m["role"] == "system"]
    turns = [m for m in messages if m["role"] != "system"]
    return "\n".join(system).strip(), turns


async def ai_chat(
    messages: list[dict],
    *,
    use_case: str | None = None,
    temperature: float = 0.7,
    json_mode: bool = False,
    max_tokens: int = 1024,
    http_client: httpx.AsyncClient | None = None,
) -> str:
    """Return the assistant text for ``messages`` ("" when the model said nothing).

    Roles are system / user / assistant. ``http_client`` only applies to Gemini.
    """
    model = model_for(use_case)
    provider = provider_for(model)
    logger.debug("ai_chat use_case=%s model=%s provider=%s", use_case, model, provider.value)

    if provider == AIProvider.GEMINI:
        return await _gemini_chat(messages, model, temperature, json_mode, max_tokens, http_client)
    if provider == AIProvider.ANTHROPIC:
        return await _anthropic_chat(messages, model, temperature, json_mode, max_tokens)
    return await _openai_chat(messages, model, temperature, json_mode, max_tokens)


def _upstream_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("message") or f"HTTP {response.status_code}"
    return response.text or f"HTTP {response.status_code}"


async def _gemini_chat(
    messages: list[dict],
    model: str,
    temperature: float,
    json_mode: bool,
    max_tokens: int,
    http_client: httpx.AsyncClient | None,
) -> str:
    if not settings.gemini_api_key:
        raise AIServiceError("GEMINI_API_KEY is not configured")

    # Gemini calls the assistant "model"
    system_text, turns = split_system(messages)
    contents = [
        {"role": "user" if m["role"] == "user" else "model", "parts": [{"text": m["content"]}]}
        for m in turns
    ]

    payload: dict = {
        "contents": contents,
        "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
    }
    if system_text:
        payload["systemInstruction"] = {"parts": [{"text": system_text}]}
    if json_mode:
        payload["generationConfig"]["responseMimeType"] = "application/json"

    url = f"{settings.gemini_api_url.rstrip('/')}/{model}:generateContent"
    client = http_client or httpx.AsyncClient(timeout=30)
    try:
        response = await client.post(url, params={"key": settings.gemini_api_key}, json=payload)
    except httpx.HTTPError as exc:
        logger.error("Gemini request failed: %s", exc)
        raise AIServiceError(f"Gemini request failed: {exc}") from exc
    finally:
        if http_client is None:
            await client.aclose()

    if response.status_code >= 400:
        message = _upstream_message(response)
        logger.error("Gemini returned %d: %s", response.status_code, message)
        raise AIServiceError(message)

    data = response.json()
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"] or ""
    except (KeyError, IndexError, TypeError):
        return ""


async def _openai_chat(messages: list[dict], model: str, temperature: float, json_mode: bool, max_tokens: int) -> str:
    from openai import AsyncOpenAI, OpenAIError

    if not settings.api_key:
        raise AIServiceError("API_KEY is not configured")

    extra = {"response_format": {"type": "json_object"}} if json_mode else {}
    try:
        completion = await AsyncOpenAI(api_key=settings.api_key).chat.completions.create(
            model=model, messages=messages, temperature=temperature, max_tokens=max_tokens, **extra,
        )
    except OpenAIError as exc:
        logger.error("OpenAI call failed: %s", exc)
        raise AIServiceError(str(exc)) from exc
    return completion.choices[0].message.content or ""


async def _anthropic_chat(messages: list[dict], model: str, temperature: float, json_mode: bool, max_tokens: int) -> str:
    import anthropic

    if not settings.anthropic_api_key:
        raise AIServiceError("ANTHROPIC_API_KEY is not configured")

    system, turns = split_system(messages)
    if json_mode:
        system = f"{system}\n\n{JSON_ONLY_INSTRUCTION}".strip()
    extra = {"system": system} if system else {}
    try:
        reply = await anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key).messages.create(
            model=model, messages=turns, temperature=temperature, max_tokens=max_tokens, **extra,
        )
    except anthropic.AnthropicError as exc:
        logger.error("Anthropic call failed: %s", exc)
        raise AIServiceError(str(exc)) from exc
    return "".join(getattr(block, "text", "") for block in reply.content)
