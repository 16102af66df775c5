"""Thin Gemini REST client (generateContent) over httpx.

Only the two shapes the app needs: JSON text generation and single-voice
speech synthesis. Prompt wording lives with the callers.
"""

import base64
import binascii
import logging

import httpx

import config
from errors import ProviderError, SpeechError
from transport import request_json

logger = logging.getLogger(__name__)


def _first_part(data: dict) -> dict:
    try:
        part = data["candidates"][0]["content"]["parts"][0]
    except (KeyError, IndexError, TypeError):
        return {}
    return part if isinstance(part, dict) else {}


class GeminiClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str = config.GEMINI_API_KEY,
        base_url: str = config.GEMINI_API_URL,
        model: str = config.DISCOVERY_MODEL,
        tts_model: str = config.TTS_MODEL,
        voice: str = config.TTS_VOICE,
    ):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.tts_model = tts_model
        self.voice = voice

    def _url(self, model: str) -> str:
        return f"{self.base_url}/models/{model}:generateContent"

    async def generate_json_text(self, prompt: str) -> str:
        """Ask the model for a JSON answer and return the raw text ("" if none)."""
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"responseMimeType": "application/json"},
        }
        data = await request_json(
            self.client, "POST", self._url(self.model), params={"key": self.api_key}, json=body,
        )
        text = _first_part(data).get("text")
        if not text or not isinstance(text, str):
            logger.warning("Empty text in %s response", self.model)
            return ""
        return text

    async def synthesize(self, text: str) -> bytes:
        """Return raw PCM16 mono audio (config.TTS_SAMPLE_RATE) for text."""
        body = {
            "contents": [{"parts": [{"text": f"Say in a professional tone: {text}"}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": self.voice}},
                },
            },
        }
        try:
            data = await request_json(
                self.client, "POST", self._url(self.tts_model), params={"key": self.api_key}, json=body,
            )
        except ProviderError as exc:
            raise SpeechError(str(exc)) from exc

        inline = _first_part(data).get("inlineData")
        encoded = inline.get("data") if isinstance(inline, dict) else None
        if not encoded:
            raise SpeechError("No audio in TTS response")
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, TypeError, ValueError) as exc:
            raise SpeechError("Malformed audio payload") from exc
