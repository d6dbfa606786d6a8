"""
AI completion service backed by Azure OpenAI chat completions.

Each AI node subtype builds its own prompt from the node configuration
(interpolated against the node input) and returns a subtype-shaped payload
together with token usage.
"""

import json
import logging
from typing import Any, Dict, Optional

from openai import AsyncAzureOpenAI

from nodeflow.config import Settings, get_settings
from nodeflow.engine.models import NodeType
from nodeflow.engine.templates import interpolate
from nodeflow.services.http_gateway import GatewayResponse

logger = logging.getLogger(__name__)

MISSING_CREDENTIALS_MESSAGE = (
    "Azure OpenAI credentials not configured. Add AZURE_OPENAI_API_KEY, "
    "AZURE_OPENAI_ENDPOINT, and AZURE_OPENAI_DEPLOYMENT_ID to .env"
)

ANALYSIS_PROMPTS = {
    "sentiment": (
        "Analyze the sentiment of the following text. Respond with: Positive, Negative, "
        "or Neutral, followed by a confidence score (0-1) and brief explanation."
    ),
    "keywords": (
        "Extract the most important keywords and phrases from the following text. "
        "Return them as a JSON array."
    ),
    "summary": "Provide a concise summary of the following text in 2-3 sentences.",
}

PERSONALITY_PROMPTS = {
    "professional": "Respond in a professional and formal manner.",
    "friendly": "Respond in a warm, friendly, and conversational manner.",
    "concise": "Respond with brief, to-the-point answers.",
}


def _render(value: Any, input: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        return str(value)
    return interpolate(value, input)


def _coerce_number(value: Any, default: float) -> float:
    """Numeric config values arrive as strings from the editor; 0 or junk means default."""
    try:
        number = float(value) if value is not None else default
    except (TypeError, ValueError):
        return default
    return number or default


def _usage(completion: Any) -> Optional[Dict[str, Any]]:
    usage = getattr(completion, "usage", None)
    if usage is None:
        return None
    return usage.model_dump() if hasattr(usage, "model_dump") else dict(usage)


def _content(completion: Any) -> Optional[str]:
    return completion.choices[0].message.content


class AICompletionService:
    def __init__(self, settings: Settings = None, client: Any = None):
        self.settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = AsyncAzureOpenAI(
                api_key=self.settings.azure_openai_api_key.get_secret_value(),
                azure_endpoint=self.settings.azure_openai_endpoint,
                api_version=self.settings.azure_openai_api_version,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
        self._client = None

    async def execute(self, node_type: str, config: Dict[str, Any], input: Any) -> GatewayResponse:
        if not self.settings.azure_credentials_configured:
            return GatewayResponse(status_code=500, payload={"error": MISSING_CREDENTIALS_MESSAGE})

        executors = {
            NodeType.AI_TEXT_GENERATOR.value: self._text_generator,
            NodeType.AI_ANALYZER.value: self._analyzer,
            NodeType.AI_CHATBOT.value: self._chatbot,
            NodeType.AI_DATA_EXTRACTOR.value: self._data_extractor,
        }
        executor = executors.get(node_type)
        if executor is None:
            return GatewayResponse(status_code=400, payload={"error": f"Unknown AI node type: {node_type}"})

        try:
            result = await executor(config or {}, input)
        except Exception as e:
            logger.error(f"AI execution error for {node_type}: {e}")
            return GatewayResponse(
                status_code=500,
                payload={"error": str(e) or "AI execution failed"},
            )
        return GatewayResponse(status_code=200, payload=result)

    async def _complete(self, messages: list, temperature: float, max_tokens: int = None) -> Any:
        params: Dict[str, Any] = {
            "model": self.settings.azure_openai_deployment_id,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        return await self._get_client().chat.completions.create(**params)

    async def _text_generator(self, config: Dict[str, Any], input: Any) -> Dict[str, Any]:
        prompt = _render(config.get("prompt"), input)
        temperature = _coerce_number(config.get("temperature"), 0.7)
        max_tokens = int(_coerce_number(config.get("maxTokens"), 500))

        completion = await self._complete(
            [{"role": "user", "content": prompt}], temperature, max_tokens
        )
        return {
            "generatedText": _content(completion),
            "model": self.settings.azure_openai_deployment_id,
            "usage": _usage(completion),
        }

    async def _analyzer(self, config: Dict[str, Any], input: Any) -> Dict[str, Any]:
        text = _render(config.get("text"), input)
        analysis_type = str(config.get("analysisType") or "sentiment")

        completion = await self._complete(
            [
                {"role": "system", "content": ANALYSIS_PROMPTS.get(analysis_type, "")},
                {"role": "user", "content": text},
            ],
            temperature=0.3,
        )
        return {
            "analysisType": analysis_type,
            "result": _content(completion),
            "usage": _usage(completion),
        }

    async def _chatbot(self, config: Dict[str, Any], input: Any) -> Dict[str, Any]:
        system_prompt = _render(config.get("systemPrompt"), input)
        user_message = _render(config.get("userMessage"), input)
        personality = str(config.get("personality") or "professional")

        full_system_prompt = f"{system_prompt}\n\n{PERSONALITY_PROMPTS.get(personality, '')}"
        completion = await self._complete(
            [
                {"role": "system", "content": full_system_prompt},
                {"role": "user", "content": user_message},
            ],
            temperature=0.7,
        )
        return {
            "response": _content(completion),
            "personality": personality,
            "usage": _usage(completion),
        }

    async def _data_extractor(self, config: Dict[str, Any], input: Any) -> Dict[str, Any]:
        text = _render(config.get("text"), input)
        schema = _render(config.get("schema"), input)

        system_prompt = (
            f"Extract information from the text according to this schema: {schema}. "
            "Return ONLY a valid JSON object matching the schema, with no additional "
            "text or explanation."
        )
        completion = await self._complete(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ],
            temperature=0.1,
        )
        extracted = _content(completion)

        try:
            parsed = json.loads(extracted or "{}")
        except ValueError:
            return {
                "extractedData": extracted,
                "schema": schema,
                "usage": _usage(completion),
                "note": "Could not parse as JSON, returning raw text",
            }
        return {"extractedData": parsed, "schema": schema, "usage": _usage(completion)}
