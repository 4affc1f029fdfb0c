import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI

from lib.config import get_settings
from lib.error_handler import ProviderError

logger = logging.getLogger(__name__)

def parse_json_content(content: str) -> Dict[str, Any]:
    """Parse a JSON object from model output, tolerating markdown code fences."""
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        try:
            if "```json" in content:
                parsed = json.loads(content.split("```json")[1].split("```")[0].strip())
            elif "```" in content:
                parsed = json.loads(content.split("```")[1].split("```")[0].strip())
            else:
                raise ProviderError(f"Model returned invalid JSON: {content[:200]}")
        except (json.JSONDecodeError, IndexError) as e:
            raise ProviderError(f"Model returned invalid JSON: {str(e)}") from e

    if not isinstance(parsed, dict):
        raise ProviderError(f"Model returned {type(parsed).__name__}, expected an object")
    return parsed

class OpenAIClient:
    def __init__(self, client: Optional[OpenAI] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.timeout = timeout or settings.provider_timeout_seconds
        self.client = client or OpenAI(api_key=settings.openai_api_key, timeout=self.timeout)

    async def _call(self, func, **kwargs):
        """Run a blocking SDK call off the event loop, bounded by the provider timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, **kwargs),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Provider call timed out after {self.timeout}s") from e
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Provider call failed: {str(e)}") from e

    async def complete_text(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 300
    ) -> str:
        """
        Generate a chat completion and return its text
        """
        response = await self._call(
            self.client.chat.completions.create,
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens
        )
        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    async def complete_json(
        self,
        prompt: str,
        model: str,
        system: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 500
    ) -> Dict[str, Any]:
        """
        Generate a JSON-mode completion and parse it into a dict
        """
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await self._call(
            self.client.chat.completions.create,
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"}
        )
        if not response.choices or not response.choices[0].message.content:
            raise ProviderError("Model returned an empty response")
        return parse_json_content(response.choices[0].message.content)

    async def describe_image(self, image_base64: str, instruction: str, model: str) -> Dict[str, Any]:
        """
        Ask a vision model about an image and parse its JSON answer
        """
        response = await self._call(
            self.client.chat.completions.create,
            model=model,
            messages=[
                {"role": "system", "content": instruction},
                {
                    "role": "user",
                    "content": [{
                        "type": "image_url",
                        "image_url": {"url": f"data:image/jpeg;base64,{image_base64}"}
                    }]
                }
            ],
            max_tokens=300,
            response_format={"type": "json_object"}
        )
        if not response.choices or not response.choices[0].message.content:
            raise ProviderError("Vision model returned an empty response")
        return parse_json_content(response.choices[0].message.content)
