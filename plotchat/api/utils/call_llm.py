import argparse
import logging
import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from openai import OpenAI, OpenAIError

from plotchat.errors import LLMRequestError

logger = logging.getLogger(__name__)

LIST_OF_OPENROUTER_MODELS = [
    "openrouter/auto",
    "deepseek/deepseek-chat-v3-0324:free",
    "qwen/qwen3-235b-a22b:free",
    "moonshotai/kimi-k2:free",
    "openai/gpt-oss-20b:free",
]
LIST_OF_GEMINI_MODELS = ["gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.0-flash", "gemini-2.5-flash-lite"]

DEFAULT_MAX_TOKENS = 4096

# Gemini calls the assistant side of a conversation "model".
_GEMINI_ROLES = {"user": "user", "assistant": "model"}


def _flatten_chat_content(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    parts = []
    try:
        for item in content:
            if isinstance(item, str):
                parts.append(item)
                continue
            if isinstance(item, dict):
                text_value = item.get("text") or item.get("content")
                if text_value:
                    parts.append(str(text_value))
                continue
            text_attr = getattr(item, "text", None)
            if text_attr:
                parts.append(str(text_attr))
    except TypeError:
        pass
    return "".join(parts)


def _usage_from_source(provider: str, usage_obj: Any) -> Dict[str, Any]:
    if usage_obj is None:
        return {"provider": provider}
    if isinstance(usage_obj, dict):
        prompt_tokens = usage_obj.get("prompt_tokens") or usage_obj.get("input_tokens") or 0
        completion_tokens = usage_obj.get("completion_tokens") or usage_obj.get("output_tokens") or 0
        total_tokens = usage_obj.get("total_tokens") or (prompt_tokens + completion_tokens)
    else:
        prompt_tokens = getattr(usage_obj, "prompt_tokens", None) or getattr(usage_obj, "input_tokens", 0) or 0
        completion_tokens = getattr(usage_obj, "completion_tokens", None) or getattr(usage_obj, "output_tokens", 0) or 0
        total_tokens = getattr(usage_obj, "total_tokens", None) or (prompt_tokens + completion_tokens)
    return {
        "provider": provider,
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": total_tokens,
    }


def _gemini_finish_reason(response: Any) -> str:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return ""
    reason = getattr(candidates[0], "finish_reason", None)
    if reason is None:
        return ""
    return str(getattr(reason, "name", reason)).upper()


def call_llm_gemini(
    messages: List[Dict[str, str]],
    system_prompt: Optional[str] = None,
    model_name: Optional[str] = None,
    api_key: Optional[str] = None,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    thinking_budget: Optional[int] = None,
) -> Dict[str, Any]:
    """Send a conversation to Gemini.

    Returns ``{"content", "usage", "truncated"}``; ``truncated`` is set when the
    reply stopped on the output token limit.
    """
    api_key = api_key or os.getenv("GEMINI_API_KEY")
    model_name = model_name or os.getenv("GEMINI_MODEL") or LIST_OF_GEMINI_MODELS[1]
    if not api_key:
        raise LLMRequestError("Missing GEMINI_API_KEY.")

    contents = [
        types.Content(
            role=_GEMINI_ROLES.get(message["role"], "user"),
            parts=[types.Part(text=message["content"])],
        )
        for message in messages
    ]
    config_kwargs: Dict[str, Any] = {"max_output_tokens": max_tokens}
    if system_prompt:
        config_kwargs["system_instruction"] = system_prompt
    if thinking_budget is not None:
        config_kwargs["thinking_config"] = types.ThinkingConfig(thinking_budget=thinking_budget)

    client = genai.Client(api_key=api_key)
    try:
        response = client.models.generate_content(
            model=model_name,
            contents=contents,
            config=types.GenerateContentConfig(**config_kwargs),
        )
    except (genai_errors.APIError, httpx.HTTPError) as exc:
        raise LLMRequestError(str(exc)) from exc

    content = getattr(response, "text", None) or ""
    usage_metadata = getattr(response, "usage_metadata", None)
    usage_info = {
        "provider": "gemini",
        "prompt_tokens": getattr(usage_metadata, "prompt_token_count", 0),
        "completion_tokens": getattr(usage_metadata, "candidates_token_count", 0),
        "total_tokens": getattr(usage_metadata, "total_token_count", 0),
    }
    truncated = _gemini_finish_reason(response) == "MAX_TOKENS"
    logger.info("gemini %s usage=%s truncated=%s", model_name, usage_info, truncated)
    return {"content": content, "usage": usage_info, "truncated": truncated}


def _resolve_openai_client(api_key: Optional[str], base_url: str):
    host = urlparse(base_url).hostname or ""
    if "openrouter.ai" in host:
        key = api_key or os.getenv("OPENROUTER_API_KEY")
        provider = "openrouter"
        default_model = os.getenv("OPENROUTER_MODEL") or LIST_OF_OPENROUTER_MODELS[0]
    elif host.endswith("z.ai") or host.endswith("bigmodel.cn"):
        key = api_key or os.getenv("ZHIPU_API_KEY") or os.getenv("OPENAI_API_KEY")
        provider = "zhipu"
        default_model = os.getenv("ZHIPU_MODEL", "glm-4.5-flash")
    else:
        key = api_key or os.getenv("OPENAI_API_KEY")
        provider = "openai"
        default_model = os.getenv("OPENAI_MODEL", "gpt-4o")
    if not key:
        raise LLMRequestError(f"Missing API key for {provider} ({host or base_url}).")
    return OpenAI(api_key=key, base_url=base_url.rstrip("/")), provider, default_model


def call_llm_openai(
    messages: List[Dict[str, str]],
    system_prompt: Optional[str] = None,
    model_name: Optional[str] = None,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> Dict[str, Any]:
    """Send a conversation to an OpenAI-compatible chat completions endpoint."""
    base_url = base_url or os.getenv("OPENAI_BASE_URL") or "https://api.openai.com/v1"
    client, provider, default_model = _resolve_openai_client(api_key, base_url)
    effective_model = model_name or default_model

    chat_messages: List[Dict[str, str]] = []
    if system_prompt:
        chat_messages.append({"role": "system", "content": system_prompt})
    chat_messages.extend({"role": m["role"], "content": m["content"]} for m in messages)

    try:
        resp = client.chat.completions.create(
            model=effective_model,
            messages=chat_messages,
            max_tokens=max_tokens,
        )
    except OpenAIError as exc:
        raise LLMRequestError(str(exc)) from exc

    if not resp.choices:
        raise LLMRequestError("LLM response had no choices")
    choice = resp.choices[0]
    content = _flatten_chat_content(getattr(choice.message, "content", ""))
    usage_info = _usage_from_source(provider, getattr(resp, "usage", None))
    truncated = getattr(choice, "finish_reason", None) == "length"
    logger.info("%s %s usage=%s truncated=%s", provider, effective_model, usage_info, truncated)
    return {"content": content, "usage": usage_info, "truncated": truncated}


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt", default="Hello, world!", type=str)
    parser.add_argument("--provider", default="openai", choices=["openai", "gemini"])
    parser.add_argument("--model_name", default=None, type=str)
    parser.add_argument("--api_key", default=None, type=str)
    parser.add_argument("--base_url", default=None, type=str)
    parser.add_argument("--max_tokens", default=DEFAULT_MAX_TOKENS, type=int)
    args = parser.parse_args()
    conversation = [{"role": "user", "content": args.prompt}]
    if args.provider == "gemini":
        result = call_llm_gemini(
            conversation,
            model_name=args.model_name,
            api_key=args.api_key,
            max_tokens=args.max_tokens,
        )
    else:
        result = call_llm_openai(
            conversation,
            model_name=args.model_name,
            api_key=args.api_key,
            base_url=args.base_url,
            max_tokens=args.max_tokens,
        )
    print(f"Content: {result['content']}")
    print(f"Usage: {result['usage']}")
    print(f"Truncated: {result['truncated']}")
