"""
Campus assistant chat client.

Provider priority:
  1. OpenRouter (chat completions over httpx) when OPENROUTER_API_KEY is set
  2. Oracle Generative AI via OCI signed requests when compartment + model are set
  3. Anthropic when ANTHROPIC_API_KEY is set
  4. A stub reply when nothing is configured
"""

import asyncio
import json
import logging
from pathlib import Path

import httpx
import oci

from campus_market.config import settings

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I didn't get that."

ASSISTANT_SYSTEM_PROMPT = """You are CampusKart AI Assistant, a chatbot built exclusively for the CampusKart platform, a student-to-student marketplace.

Help users with anything related to CampusKart:
- How to buy, sell, or trade items.
- What items are allowed or banned (no alcohol, tobacco, vapes, drugs or paraphernalia, weapons, or explicit content).
- Creating listings (books, electronics, clothes, etc.). The first listing is free; each further listing needs an unlock.
- Managing their account and marking items as sold.
- Tips to write better product descriptions or negotiate deals.
- How CampusKart keeps buyers and sellers safe, and tips for meeting on campus.

You ONLY answer CampusKart-related questions. For anything else, politely say:
"Sorry! I can only help with CampusKart stuff. Ask me anything about using the platform."

Be friendly and casual, like a smart college student. Keep answers short and helpful."""


# ─────────────────────────────────────────────────────────────────────────────
# OpenRouter
# ─────────────────────────────────────────────────────────────────────────────

async def _openrouter_chat(system: str, message: str, max_tokens: int) -> str:
    body = {
        "model": settings.OPENROUTER_MODEL,
        "max_tokens": max_tokens,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": message},
        ],
    }
    headers = {"Authorization": f"Bearer {settings.OPENROUTER_API_KEY}"}
    async with httpx.AsyncClient(timeout=httpx.Timeout(60.0)) as client:
        resp = await client.post(settings.OPENROUTER_API_URL, json=body, headers=headers)
        resp.raise_for_status()
        data = resp.json()

    choices = data.get("choices") or []
    if not choices:
        return ""
    return (choices[0].get("message") or {}).get("content") or ""


# ─────────────────────────────────────────────────────────────────────────────
# Oracle GenAI — OCI signed requests
# ─────────────────────────────────────────────────────────────────────────────

def _oci_post(path: str, body: dict) -> dict:
    cfg_file = str(Path(settings.OCI_CONFIG_FILE).expanduser())
    cfg = oci.config.from_file(file_location=cfg_file, profile_name=settings.OCI_CONFIG_PROFILE)
    endpoint = settings.ORACLE_GENAI_BASE_URL.rstrip("/") or (
        f"https://inference.generativeai.{cfg.get('region', 'us-chicago-1')}.oci.oraclecloud.com"
    )
    client = oci.generative_ai_inference.GenerativeAiInferenceClient(
        config=cfg,
        service_endpoint=endpoint,
        timeout=(10.0, 120.0),
    )
    response = client.base_client.call_api(
        resource_path=path,
        method="POST",
        header_params={"content-type": "application/json"},
        body=body,
        response_type="str",
    )
    text = response.data if isinstance(response.data, str) else str(response.data)
    return json.loads(text)


async def _oracle_chat(system: str, message: str, max_tokens: int) -> str:
    body = {
        "compartmentId": settings.ORACLE_GENAI_COMPARTMENT_ID,
        "servingMode": {"servingType": "ON_DEMAND", "modelId": settings.ORACLE_GENAI_MODEL},
        "chatRequest": {
            "apiFormat": "GENERIC",
            "systemMessage": system,
            "messages": [{"role": "USER", "content": [{"type": "TEXT", "text": message}]}],
            "maxTokens": max_tokens,
            "isStream": False,
        },
    }
    # The SDK prefixes the API version, so the path is /actions/chat.
    data = await asyncio.to_thread(_oci_post, "/actions/chat", body)
    choices = data.get("chatResponse", {}).get("choices", [])
    if not choices:
        return ""
    content = choices[0].get("message", {}).get("content", [])
    if isinstance(content, list) and content:
        return content[0].get("text", "")
    return str(content)


# ─────────────────────────────────────────────────────────────────────────────
# Anthropic
# ─────────────────────────────────────────────────────────────────────────────

async def _anthropic_chat(system: str, message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
    response = await client.messages.create(
        model=settings.ANTHROPIC_MODEL,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": message}],
    )
    return response.content[0].text


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────

def ai_provider_name() -> str:
    if settings.OPENROUTER_API_KEY:
        return f"OpenRouter ({settings.OPENROUTER_MODEL})"
    if settings.ORACLE_GENAI_COMPARTMENT_ID and settings.ORACLE_GENAI_MODEL:
        return f"Oracle GenAI OCI-Signed ({settings.ORACLE_GENAI_MODEL})"
    if settings.ANTHROPIC_API_KEY:
        return f"Anthropic ({settings.ANTHROPIC_MODEL})"
    return "none"


async def ask_assistant(message: str, max_tokens: int = 400) -> str:
    """Answer one user question with the CampusKart assistant persona.

    Provider failures are logged and answered with ``FALLBACK_REPLY``; the
    chat box never surfaces a server error.
    """
    system = ASSISTANT_SYSTEM_PROMPT
    try:
        if settings.OPENROUTER_API_KEY:
            reply = await _openrouter_chat(system, message, max_tokens)
        elif settings.ORACLE_GENAI_COMPARTMENT_ID and settings.ORACLE_GENAI_MODEL:
            reply = await _oracle_chat(system, message, max_tokens)
        elif settings.ANTHROPIC_API_KEY:
            reply = await _anthropic_chat(system, message, max_tokens)
        else:
            return "[AI not configured] Set OPENROUTER_API_KEY in backend/.env and restart."
    except Exception as e:
        logger.error("Assistant provider %s failed: %s", ai_provider_name(), e)
        return FALLBACK_REPLY
    return reply.strip() or FALLBACK_REPLY
