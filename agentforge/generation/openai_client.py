"""OpenAI / Azure OpenAI client selection and metered JSON responses."""

from __future__ import annotations

import os
import time
from typing import Any, Dict, List, Optional, Tuple

from openai import AzureOpenAI, OpenAI

from ..logger import log

# Approximate pricing per 1K tokens
MODEL_PRICING = {
    "gpt-5-mini": {"input": 0.00025, "cached_input": 0.000025, "output": 0.002},
    "gpt-5": {"input": 0.00125, "cached_input": 0.000125, "output": 0.01},
    "gpt-4.1-mini": {"input": 0.0004, "output": 0.0016},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4o": {"input": 0.005, "output": 0.015},
}

_client: Optional[OpenAI] = None
_client_is_azure = False
_azure_deployment: Optional[str] = None


def _is_reasoning_model(model: str) -> bool:
    lowered = (model or "").strip().lower()
    return lowered.startswith(("gpt-5", "o1", "o3", "o4"))


def openai_client() -> OpenAI:
    """Return the shared client, preferring Azure when ``OPENAI_CLIENT`` says so or it is configured."""
    global _client, _client_is_azure, _azure_deployment
    if _client is not None:
        return _client

    azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
    azure_key = os.getenv("AZURE_OPENAI_API_KEY")
    preference = (os.getenv("OPENAI_CLIENT") or "").strip().lower()
    use_azure = preference == "azure" or (preference != "openai" and bool(azure_endpoint and azure_key))

    if use_azure:
        if not (azure_endpoint and azure_key):
            raise RuntimeError(
                "OPENAI_CLIENT=azure requested but AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_API_KEY are not set"
            )
        _client = AzureOpenAI(
            azure_endpoint=azure_endpoint,
            api_key=azure_key,
            api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-12-01-preview"),
        )
        _client_is_azure = True
        _azure_deployment = os.getenv("AZURE_OPENAI_DEPLOYMENT")
        log("[openai] initialized Azure client", endpoint=azure_endpoint, deployment=_azure_deployment)
    else:
        key = os.getenv("OPENAI_API_KEY")
        if not key:
            raise RuntimeError("OPENAI_API_KEY must be set to use the standard OpenAI client")
        _client = OpenAI(api_key=key)
        _client_is_azure = False
        _azure_deployment = None
        log("[openai] initialized standard OpenAI client")
    return _client


def reset_client() -> None:
    global _client, _client_is_azure, _azure_deployment
    _client = None
    _client_is_azure = False
    _azure_deployment = None


def _estimate_cost(model: str, input_tokens: int, output_tokens: int, cache_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model, {"input": 0, "output": 0})
    return (
        (input_tokens / 1000) * pricing.get("input", 0)
        + (cache_tokens / 1000) * pricing.get("cached_input", pricing.get("input", 0))
        + (output_tokens / 1000) * pricing.get("output", 0)
    )


def call_json_response(
    *,
    model: str,
    system_prompt: Optional[str],
    user_prompt: str,
    temperature: Optional[float] = 0.0,
) -> Tuple[str, Dict[str, Any]]:
    """Ask for a JSON object and return ``(text, metrics)``."""
    start_time = time.time()

    messages: List[Dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_prompt})

    client = openai_client()
    target_model = _azure_deployment if (_client_is_azure and _azure_deployment) else model
    provider = "azure" if _client_is_azure else "openai"
    log(f"[openai:{provider}] request", model=model, deployed_as=target_model, prompt_len=len(user_prompt))

    kwargs: Dict[str, Any] = {
        "model": target_model,
        "input": messages,
        "text": {"format": {"type": "json_object"}},
    }
    if _is_reasoning_model(model):
        kwargs["reasoning"] = {"effort": "low"}
    elif temperature is not None:
        kwargs["temperature"] = temperature

    resp = client.responses.create(**kwargs)
    duration_ms = int((time.time() - start_time) * 1000)

    text = (getattr(resp, "output_text", "") or "").strip()
    usage = getattr(resp, "usage", None)
    input_tokens = getattr(usage, "input_tokens", None) or 0
    output_tokens = getattr(usage, "output_tokens", None) or 0
    details = getattr(usage, "input_tokens_details", None)
    cache_tokens = getattr(details, "cached_tokens", None) or 0
    total_tokens = getattr(usage, "total_tokens", None) or (input_tokens + output_tokens)
    total_cost = _estimate_cost(model, input_tokens, output_tokens, cache_tokens)

    metrics = {
        "duration_ms": duration_ms,
        "prompt_tokens": input_tokens,
        "completion_tokens": output_tokens,
        "total_tokens": total_tokens,
        "cache_tokens": cache_tokens,
        "estimated_cost_usd": round(total_cost, 6),
        "model": model,
    }
    log(
        f"[openai:{provider}] response",
        output_len=len(text),
        duration=f"{duration_ms}ms",
        tokens=total_tokens,
        cost=f"${total_cost:.6f}",
    )
    return text, metrics


__all__ = ["MODEL_PRICING", "call_json_response", "openai_client", "reset_client"]
