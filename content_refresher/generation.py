# content_refresher/generation.py

import json
import logging
import re
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

import httpx
import openai
from openai import AsyncOpenAI
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from .errors import AuthFailed, EmptyResponse, InvalidParams, RateLimited
from .generation_cache import GenerationCache, fingerprint
from .prompts import FORMAT_HINTS, PROMPTS, SYSTEM_BASE, render_prompt
from .settings import GenerationSettings

logger = logging.getLogger(__name__)

FORMATS = ("json", "html", "text")

# Retried by tenacity; AuthFailed / InvalidParams abort at once.
TRANSIENT_ERRORS = (
    RateLimited,
    EmptyResponse,
    openai.APIConnectionError,
    openai.InternalServerError,
    httpx.HTTPError,
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


# -----------------------------------------------------------------------------
# JSON extraction / repair
# -----------------------------------------------------------------------------
def _balance(s: str) -> str:
    """Close any string and brackets left open by a truncated response."""
    stack: List[str] = []
    in_str = False
    escaped = False
    for ch in s:
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack:
            stack.pop()
    out = s + ('"' if in_str else "")
    out = out.rstrip().rstrip(",")
    return out + "".join(reversed(stack))


def extract_json(text: str) -> Any:
    """
    Pull the outermost JSON object/array out of a model response.
    Raises ValueError when nothing parseable is found.
    """
    if not text or not text.strip():
        raise ValueError("empty JSON text")
    s = _FENCE_RE.sub("", text.strip())
    starts = [i for i in (s.find("{"), s.find("[")) if i != -1]
    if not starts:
        raise ValueError("no JSON object or array found")
    s = s[min(starts):]

    last = max(s.rfind("}"), s.rfind("]"))
    candidates = []
    if last != -1:
        cut = s[: last + 1]
        candidates += [cut, _TRAILING_COMMA_RE.sub(r"\1", cut)]
    candidates.append(_balance(_TRAILING_COMMA_RE.sub(r"\1", s)))

    error: Optional[ValueError] = None
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as e:
            error = e
    raise ValueError(f"unparseable JSON: {error}")


async def parse_json(text: str, repair: Optional[Callable[[str], Awaitable[str]]] = None) -> Any:
    """extract_json, then one repair round-trip; a second failure raises InvalidParams."""
    try:
        return extract_json(text)
    except ValueError as first:
        if repair is None:
            raise InvalidParams(f"Unparseable JSON response: {first}") from first
        logger.info("JSON parse failed (%s); asking for a repair", first)
    repaired = await repair(text)
    try:
        return extract_json(repaired)
    except ValueError as e:
        raise InvalidParams(f"JSON still unparseable after repair: {e}") from e


async def generate_json(generator, prompt_key: str, args: Sequence[Any]) -> Any:
    """Run a JSON prompt on any object exposing ``generate(prompt_key, args, fmt)``."""
    raw = await generator.generate(prompt_key, list(args), "json")

    async def _repair(broken: str) -> str:
        return await generator.generate("json_repair", [broken], "json")

    return await parse_json(raw, _repair)


# -----------------------------------------------------------------------------
# Client
# -----------------------------------------------------------------------------
class GenerationClient:
    """
    generate(prompt_key, args, fmt) -> str over the OpenAI chat API.

    Responses are cached by (prompt_key, args, fmt, model) fingerprint; empty
    responses raise EmptyResponse and are retried like rate limits.
    """

    def __init__(
        self,
        settings: GenerationSettings,
        *,
        client: Optional[Any] = None,
        cache: Optional[GenerationCache] = None,
        templates: Optional[Mapping[str, str]] = None,
        current_year: Optional[str] = None,
        wait=None,
    ):
        self.settings = settings
        self.model = settings.model
        self.cache = cache
        self.templates: Dict[str, str] = dict(PROMPTS)
        self.templates.update({k: v for k, v in (templates or {}).items() if isinstance(v, str) and v.strip()})
        self.current_year = current_year or str(datetime.now().year)
        self._wait = wait or wait_random_exponential(multiplier=1, min=1, max=30)
        self.token_usage = {"prompt": 0, "completion": 0, "total": 0}

        if client is not None:
            self.client = client
        else:
            if not settings.api_key:
                raise AuthFailed("Generation API key not configured (OPENAI_API_KEY).")
            http_client = httpx.AsyncClient(timeout=httpx.Timeout(120.0, connect=10.0))
            self.client = AsyncOpenAI(api_key=settings.api_key, base_url=settings.base_url, http_client=http_client)

    async def _chat(self, prompt_key: str, prompt: str, fmt: str) -> str:
        try:
            t0 = time.time()
            resp = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": f"{SYSTEM_BASE} {FORMAT_HINTS[fmt]}"},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
            )
            elapsed = time.time() - t0
        except openai.AuthenticationError as e:
            raise AuthFailed(str(e)) from e
        except openai.PermissionDeniedError as e:
            raise AuthFailed(str(e)) from e
        except openai.RateLimitError as e:
            raise RateLimited(str(e)) from e
        except openai.BadRequestError as e:
            msg = str(e)
            if "api key" in msg.lower():
                raise AuthFailed(msg) from e
            raise InvalidParams(msg) from e

        usage = getattr(resp, "usage", None)
        if usage is not None:
            self.token_usage["prompt"] += int(getattr(usage, "prompt_tokens", 0) or 0)
            self.token_usage["completion"] += int(getattr(usage, "completion_tokens", 0) or 0)
            self.token_usage["total"] += int(getattr(usage, "total_tokens", 0) or 0)
            logger.info(f"[TOKENS] {prompt_key} → total={getattr(usage, 'total_tokens', 0)} ({elapsed:.2f}s)")

        choices = getattr(resp, "choices", None) or []
        text = (choices[0].message.content or "").strip() if choices else ""
        if not text:
            raise EmptyResponse(f"{prompt_key} returned an empty response")
        return text

    async def generate(self, prompt_key: str, args: Sequence[Any], fmt: str = "text") -> str:
        if fmt not in FORMATS:
            raise InvalidParams(f"Unknown response format: {fmt}")
        try:
            prompt = render_prompt(prompt_key, args, templates=self.templates, current_year=self.current_year)
        except (KeyError, IndexError) as e:
            raise InvalidParams(f"Cannot render prompt {prompt_key}: {e}") from e

        key = fingerprint(prompt_key, args, fmt, model=self.model)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached:
                logger.debug("Cache hit for %s", prompt_key)
                return cached

        text = ""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, int(self.settings.max_attempts))),
            wait=self._wait,
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning("Retrying %s (attempt %d)", prompt_key, attempt.retry_state.attempt_number)
                text = await self._chat(prompt_key, prompt, fmt)

        if self.cache is not None:
            self.cache.put(key, prompt_key, text)
        return text

    async def aclose(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
