import base64
import logging
from typing import Dict, Any, List, Optional

from openai import AsyncOpenAI, OpenAIError

from config import config
from .errors import InferenceError

logger = logging.getLogger(__name__)

class CloudLLMService:
    """Inference collaborator backed by OpenAI chat completions (text and vision)"""

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self.api_key = config.OPENAI_API_KEY
        self.client = client
        self.model_name = config.OPENAI_MODEL
        self.vision_model_name = config.OPENAI_VISION_MODEL
        self.is_available = client is not None or bool(self.api_key)

        if not self.is_available:
            logger.warning("OpenAI API key not configured")

    def _get_client(self) -> AsyncOpenAI:
        if self.client is None:
            if not self.api_key:
                raise InferenceError("OpenAI API key not configured")
            self.client = AsyncOpenAI(api_key=self.api_key)
        return self.client

    async def infer(self, instruction: str, image_bytes: Optional[bytes] = None) -> str:
        """
        Send one instruction (and optionally one JPEG image) and return the raw reply text.

        Raises:
            InferenceError: on any transport, auth or model failure, or an empty reply
        """
        client = self._get_client()
        model = self.vision_model_name if image_bytes else self.model_name
        messages = self._build_messages(instruction, image_bytes)

        try:
            response = await client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=config.LLM_MAX_TOKENS,
                temperature=config.LLM_TEMPERATURE,
            )
        except OpenAIError as e:
            logger.error(f"Error generating response with cloud LLM: {e}", exc_info=True)
            raise InferenceError(f"OpenAI request failed: {type(e).__name__}") from e

        if not response or not response.choices:
            raise InferenceError("OpenAI returned no choices")
        response_text = (response.choices[0].message.content or "").strip()
        if not response_text:
            raise InferenceError("OpenAI returned an empty reply")

        usage = self._usage(response)
        logger.info(f"Inference via {model} completed ({usage['total_tokens']} tokens)")
        return response_text

    @staticmethod
    def _build_messages(instruction: str, image_bytes: Optional[bytes]) -> List[Dict[str, Any]]:
        if not image_bytes:
            return [{"role": "user", "content": instruction}]
        data_url = "data:image/jpeg;base64," + base64.b64encode(image_bytes).decode("ascii")
        return [{
            "role": "user",
            "content": [
                {"type": "text", "text": instruction},
                {"type": "image_url", "image_url": {"url": data_url}},
            ],
        }]

    @staticmethod
    def _usage(response: Any) -> Dict[str, int]:
        usage = getattr(response, "usage", None)
        return {
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) if usage else 0,
            "completion_tokens": getattr(usage, "completion_tokens", 0) if usage else 0,
            "total_tokens": getattr(usage, "total_tokens", 0) if usage else 0,
        }

    def get_service_status(self) -> Dict[str, Any]:
        """Get service status information"""
        return {
            "is_available": self.is_available,
            "provider": "OpenAI",
            "model": self.model_name,
            "vision_model": self.vision_model_name,
            "api_key_configured": bool(self.api_key),
            "client_initialized": self.client is not None
        }

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.close()
