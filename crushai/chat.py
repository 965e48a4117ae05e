"""
Thin relay to an OpenAI-compatible chat completion endpoint.

Gating (wallet proof, cooldown, hold threshold) happens in the HTTP layer; this
module only shapes the conversation and talks to the upstream.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, List, Optional

import requests

from crushai.errors import ConfigError, UpstreamError

logger = logging.getLogger(__name__)

MAX_INPUT_LENGTH = 4000
HISTORY_LIMIT = 16
MAX_TOKENS = 300
DEFAULT_REPLY = "Mm... tell me more"


def system_prompt(persona: str) -> str:
    return (
        f"You are {persona}, Crush AI's flirty muse.\n"
        "Tone: playful, teasing, warm; 1-3 sentences by default. Sprinkle emojis lightly.\n"
        "Boundaries: keep it consensual and safe; avoid explicit sexual content; "
        "no illegal or harmful guidance.\n"
        "Mirror the user's vibe, invite fun, and keep the conversation going."
    )


def reply_text(data: dict) -> str:
    """First choice's message content, or the default reply for any other shape."""
    choices = data.get("choices")
    choice = choices[0] if isinstance(choices, list) and choices else None
    message = choice.get("message") if isinstance(choice, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return (content.strip() if isinstance(content, str) else "") or DEFAULT_REPLY


def sanitize_history(history: Any) -> List[Dict[str, str]]:
    """Keep the last messages, coerce roles and drop empty content."""
    if not isinstance(history, list):
        return []
    out = []
    for entry in history[-HISTORY_LIMIT:]:
        if not isinstance(entry, dict):
            continue
        role = entry.get("role") if entry.get("role") in ("assistant", "system") else "user"
        content = entry.get("content")
        if isinstance(content, str) and content:
            out.append({"role": role, "content": content[:MAX_INPUT_LENGTH]})
    return out


class ChatRelay:
    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_messages(self, persona: str, history: Any, message: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": system_prompt(persona)},
            *sanitize_history(history),
            {"role": "user", "content": message},
        ]

    def _post(self, body: dict, stream: bool) -> requests.Response:
        if not self.api_key:
            raise ConfigError("OPENAI_API_KEY")
        try:
            return self.session.post(
                self.api_url,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                timeout=self.timeout,
                stream=stream,
            )
        except requests.RequestException as e:
            logger.error(f"Chat upstream request failed: {e}")
            raise UpstreamError("chat_upstream", "chat upstream unavailable") from e

    def complete(self, messages: List[Dict[str, str]], temperature: float = 0.9) -> dict:
        body = {"model": self.model, "temperature": temperature, "messages": messages, "max_tokens": MAX_TOKENS}
        response = self._post(body, stream=False)
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.ok:
            logger.warning(f"Chat upstream returned {response.status_code}")
            raise UpstreamError("chat_upstream", "chat upstream error")

        if not isinstance(data, dict):
            data = {}
        return {"reply": reply_text(data), "usage": data.get("usage"), "model": self.model}

    def stream(self, messages: List[Dict[str, str]], temperature: float = 0.9) -> Iterator[str]:
        """Yield SSE frames of ``{"token": ...}`` and a final ``[DONE]``."""
        body = {
            "model": self.model,
            "temperature": temperature,
            "messages": messages,
            "max_tokens": MAX_TOKENS,
            "stream": True,
        }
        response = self._post(body, stream=True)

        def frames() -> Iterator[str]:
            try:
                if not response.ok:
                    yield f"data: {json.dumps({'error': 'Upstream error'})}\n\n"
                    return
                for line in response.iter_lines(decode_unicode=True):
                    if not line or not line.startswith("data: "):
                        continue
                    payload = line[len("data: "):]
                    if payload == "[DONE]":
                        return
                    try:
                        token = json.loads(payload)["choices"][0]["delta"].get("content")
                    except (ValueError, KeyError, IndexError, TypeError, AttributeError):
                        continue
                    if token:
                        yield f"data: {json.dumps({'token': token})}\n\n"
            finally:
                response.close()

        def with_done() -> Iterator[str]:
            yield from frames()
            yield "data: [DONE]\n\n"

        return with_done()
