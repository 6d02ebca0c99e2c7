from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

logger = logging.getLogger(__name__)

_GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
_OPENAI_API_BASE = "https://api.openai.com/v1"
_ANTHROPIC_API_BASE = "https://api.anthropic.com/v1"


class CompletionError(Exception):
    pass


@dataclass(frozen=True)
class CompletionProvider:
    provider: str
    base_url: str
    api_key: str
    model: str


def _provider_error_message(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except Exception:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        if isinstance(err, str) and err.strip():
            return err.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message or f"HTTP {response.status_code}"


def provider_candidates(env: Mapping[str, str] | None = None) -> list[CompletionProvider]:
    source = os.environ if env is None else env
    preference = (source.get("MEEKA_CHAT_PROVIDER") or "auto").strip().lower()
    candidates: list[CompletionProvider] = []

    gemini_key = (source.get("GEMINI_API_KEY") or source.get("GOOGLE_API_KEY") or "").strip()
    if gemini_key:
        candidates.append(
            CompletionProvider(
                provider="gemini",
                base_url=(source.get("GEMINI_API_BASE_URL") or _GEMINI_API_BASE).rstrip("/"),
                api_key=gemini_key,
                model=(source.get("GEMINI_MODEL") or "gemini-2.0-flash").strip(),
            )
        )

    anthropic_key = (source.get("ANTHROPIC_API_KEY") or "").strip()
    if anthropic_key:
        candidates.append(
            CompletionProvider(
                provider="anthropic",
                base_url=(source.get("ANTHROPIC_API_BASE_URL") or _ANTHROPIC_API_BASE).rstrip("/"),
                api_key=anthropic_key,
                model=(source.get("ANTHROPIC_MODEL") or "claude-3-5-sonnet-latest").strip(),
            )
        )

    openai_key = (source.get("OPENAI_API_KEY") or "").strip()
    if openai_key:
        candidates.append(
            CompletionProvider(
                provider="openai",
                base_url=(source.get("OPENAI_API_BASE_URL") or _OPENAI_API_BASE).rstrip("/"),
                api_key=openai_key,
                model=(source.get("MEEKA_CHAT_MODEL") or "gpt-4o-mini").strip(),
            )
        )

    if preference in {"", "auto"}:
        return candidates
    aliases = {"gemini": "gemini", "google": "gemini", "claude": "anthropic", "anthropic": "anthropic", "openai": "openai"}
    canonical = aliases.get(preference)
    if not canonical:
        return candidates
    preferred = [candidate for candidate in candidates if candidate.provider == canonical]
    others = [candidate for candidate in candidates if candidate.provider != canonical]
    return preferred + others


def _clean_turns(messages: list[dict[str, str]]) -> list[dict[str, str]]:
    turns: list[dict[str, str]] = []
    for turn in messages:
        role = str(turn.get("role") or "").strip().lower()
        content = str(turn.get("content") or "").strip()
        if role in {"user", "assistant"} and content:
            turns.append({"role": role, "content": content[:2000]})
    return turns


def _gemini_text(response_json: dict[str, Any]) -> str:
    candidates = response_json.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    return "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict)).strip()


def _anthropic_text(response_json: dict[str, Any]) -> str:
    content = response_json.get("content")
    if not isinstance(content, list):
        return ""
    parts = [
        item["text"].strip()
        for item in content
        if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)
    ]
    return "\n".join(part for part in parts if part).strip()


def _openai_text(response_json: dict[str, Any]) -> str:
    choices = response_json.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    content = (choices[0].get("message") or {}).get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        return "\n".join(
            item["text"] for item in content if isinstance(item, dict) and isinstance(item.get("text"), str)
        ).strip()
    return ""


class CompletionService:
    """Stateless text completion over whichever hosted model has a key configured."""

    def __init__(
        self,
        providers: list[CompletionProvider],
        *,
        timeout_seconds: float = 25.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.providers = list(providers)
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        *,
        timeout_seconds: float = 25.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "CompletionService":
        return cls(provider_candidates(env), timeout_seconds=timeout_seconds, transport=transport)

    @property
    def available(self) -> bool:
        return bool(self.providers)

    async def complete(self, messages: list[dict[str, str]], system_preamble: str) -> str:
        if not self.providers:
            raise CompletionError("No completion provider configured")
        turns = _clean_turns(messages)
        last_error = "empty response"
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds, connect=8.0),
            transport=self._transport,
        ) as client:
            for provider in self.providers:
                try:
                    if provider.provider == "gemini":
                        text = await self._gemini(client, provider, turns, system_preamble)
                    elif provider.provider == "anthropic":
                        text = await self._anthropic(client, provider, turns, system_preamble)
                    else:
                        text = await self._openai(client, provider, turns, system_preamble)
                except (httpx.HTTPError, CompletionError, ValueError) as exc:
                    last_error = str(exc) or exc.__class__.__name__
                    logger.warning("completion call failed (%s): %s", provider.provider, last_error)
                    continue
                if text:
                    logger.debug("completion provider used (%s)", provider.provider)
                    return text
                logger.info("completion provider returned no text (%s)", provider.provider)
        raise CompletionError(last_error)

    async def _gemini(
        self,
        client: httpx.AsyncClient,
        provider: CompletionProvider,
        turns: list[dict[str, str]],
        system_preamble: str,
    ) -> str:
        contents = [{"role": "user", "parts": [{"text": system_preamble}]}]
        contents.extend(
            {"role": "user" if turn["role"] == "user" else "model", "parts": [{"text": turn["content"]}]}
            for turn in turns
        )
        payload = {
            "contents": contents,
            "generationConfig": {"temperature": 0.7, "topK": 40, "topP": 0.95, "maxOutputTokens": 1000},
        }
        response = await client.post(
            f"{provider.base_url}/models/{provider.model}:generateContent",
            params={"key": provider.api_key},
            json=payload,
        )
        if response.status_code >= 400:
            raise CompletionError(_provider_error_message(response))
        return _gemini_text(response.json())

    async def _anthropic(
        self,
        client: httpx.AsyncClient,
        provider: CompletionProvider,
        turns: list[dict[str, str]],
        system_preamble: str,
    ) -> str:
        payload = {
            "model": provider.model,
            "max_tokens": 1000,
            "temperature": 0.7,
            "system": system_preamble,
            "messages": turns,
        }
        headers = {
            "x-api-key": provider.api_key,
            "anthropic-version": os.getenv("ANTHROPIC_API_VERSION", "2023-06-01"),
            "Content-Type": "application/json",
        }
        response = await client.post(f"{provider.base_url}/messages", headers=headers, json=payload)
        if response.status_code >= 400:
            raise CompletionError(_provider_error_message(response))
        return _anthropic_text(response.json())

    async def _openai(
        self,
        client: httpx.AsyncClient,
        provider: CompletionProvider,
        turns: list[dict[str, str]],
        system_preamble: str,
    ) -> str:
        payload = {
            "model": provider.model,
            "temperature": 0.7,
            "messages": [{"role": "system", "content": system_preamble}, *turns],
        }
        headers = {
            "Authorization": f"Bearer {provider.api_key}",
            "Content-Type": "application/json",
        }
        response = await client.post(f"{provider.base_url}/chat/completions", headers=headers, json=payload)
        if response.status_code >= 400:
            raise CompletionError(_provider_error_message(response))
        return _openai_text(response.json())
