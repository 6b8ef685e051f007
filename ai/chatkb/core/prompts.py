"""Prompt templates for grounded answer generation."""

from typing import Optional

import orjson

SYSTEM_PROMPT = """You are a helpful assistant for a website. Answer only from the CONTEXT below.
If the context does not contain the answer, say you don't have that information and suggest
contacting the site owner. Never invent facts, prices, or policies. Keep answers concise.

CONTEXT:
{context}
"""

SUGGESTIONS_PROMPT = (
    "Given the user's question and the assistant's answer, suggest 3 short follow-up questions "
    "the user might ask next. Keep each under 80 characters. "
    "Return a JSON array of strings only.\n\nQuestion: {question}\n\nAnswer: {answer}\n"
)


def build_messages(
    context: str,
    question: str,
    history: Optional[list[dict[str, str]]] = None,
) -> list[dict[str, str]]:
    """Chat messages for the answer call, with up to ten prior turns."""
    messages = [{"role": "system", "content": SYSTEM_PROMPT.format(context=context)}]
    for turn in (history or [])[-10:]:
        role = turn.get("role", "user")
        if role in ("user", "assistant"):
            messages.append({"role": role, "content": turn.get("content", "")})
    messages.append({"role": "user", "content": question})
    return messages


def build_suggestions_messages(question: str, answer: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": "You generate on-topic follow-up questions. Respond ONLY with a JSON array."},
        {"role": "user", "content": SUGGESTIONS_PROMPT.format(question=question, answer=answer)},
    ]


def parse_suggestions(text: str, limit: int = 3) -> list[str]:
    """JSON array of strings from model output; empty list when it is not one."""
    text = text.strip()
    start, end = text.find("["), text.rfind("]")
    if start == -1 or end <= start:
        return []
    try:
        parsed = orjson.loads(text[start : end + 1])
    except orjson.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []
    return [s.strip() for s in parsed if isinstance(s, str) and s.strip()][:limit]
