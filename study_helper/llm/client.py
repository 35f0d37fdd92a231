import base64
import logging
from openai import AsyncOpenAI

from study_helper.config import settings

logger = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None


def get_client() -> AsyncOpenAI:
    """Create the OpenAI-compatible client on first use."""
    global _client
    if _client is None:
        _client = AsyncOpenAI(
            base_url=settings.LLM_BASE_URL,
            api_key=settings.LLM_API_KEY,
            timeout=settings.LLM_TIMEOUT,
        )
    return _client


def _json_kwargs() -> dict:
    if settings.LLM_JSON_MODE:
        return {"response_format": {"type": "json_object"}}
    return {}


async def chat_completion(
    prompt: str,
    system: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 4096,
) -> str | None:
    """Send a prompt to the LLM and return the response text."""
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    try:
        response = await get_client().chat.completions.create(
            model=settings.LLM_MODEL,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **_json_kwargs(),
        )
        return response.choices[0].message.content
    except Exception as e:
        logger.error(f"LLM request failed: {e}")
        return None


async def vision_completion(
    prompt: str,
    image: bytes,
    mime_type: str = "image/jpeg",
    temperature: float = 0.2,
    max_tokens: int = 2048,
) -> str | None:
    """Send an image with a prompt to the vision model and return the response text."""
    data_url = f"data:{mime_type};base64,{base64.b64encode(image).decode()}"
    try:
        response = await get_client().chat.completions.create(
            model=settings.LLM_VISION_MODEL,
            messages=[{
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            }],
            temperature=temperature,
            max_tokens=max_tokens,
            **_json_kwargs(),
        )
        return response.choices[0].message.content
    except Exception as e:
        logger.error(f"LLM vision request failed: {e}")
        return None
