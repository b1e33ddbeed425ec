# store_audit/llm_client.py
import asyncio
import logging
import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_google_vertexai import ChatVertexAI
from openai import OpenAI

T = TypeVar("T")

logger = logging.getLogger("store_audit")

OPENAI_PREFIXES = ("gpt-", "gpt4", "o1", "o3", "o4")


class MaxRetryErrorsException(Exception):
    pass


class ProviderBackoff:
    """
    Process-wide pause shared by every chat client. A rate-limit or timeout
    pushes `wait_until` forward and doubles the next delay (capped); each
    success halves it again.
    """

    def __init__(self, initial: float = 30.0, ceiling: float = 600.0):
        self._lock = threading.Lock()
        self.wait_until = 0.0
        self.delay = initial
        self.ceiling = ceiling

    def wait(self) -> None:
        while True:
            with self._lock:
                remaining = self.wait_until - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(min(remaining, 1.0))

    def penalize(self) -> float:
        with self._lock:
            pause = random.uniform(self.delay * 0.95, self.delay * 1.35)
            self.delay = min(self.delay * 2, self.ceiling)
            self.wait_until = max(self.wait_until, time.monotonic() + pause)
            return pause

    def relax(self) -> None:
        with self._lock:
            self.delay = max(1.0, self.delay * 0.5)


BACKOFF = ProviderBackoff()


def is_openai_model(model_name: str) -> bool:
    return (model_name or "").startswith(OPENAI_PREFIXES)


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """
    'gpt-5.1_low' -> ('gpt-5.1', {"reasoning": {"effort": "low"}})
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: empty model name")
    base, _, effort = raw.partition("_")
    return base, ({"reasoning": {"effort": effort}} if effort else {})


def is_throttling_error(e: Exception) -> bool:
    if isinstance(e, asyncio.TimeoutError):
        return True
    text = f"{e!r} {e}"
    if "TimeoutError" in text or "timed out" in text.lower():
        return True
    return "429" in text and any(
        marker in text for marker in ("RESOURCE_EXHAUSTED", "Resource has been exhausted", "Too Many Requests")
    )


def call_with_retries_sync(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    log: Optional[Callable[[str], None]] = None,
    backoff: Optional[ProviderBackoff] = None,
) -> T:
    backoff = backoff or BACKOFF
    last_error: Optional[Exception] = None

    for attempt in range(1, retries + 1):
        backoff.wait()
        started = time.time()
        try:
            result = fn()
        except Exception as e:
            last_error = e
            note = f"attempt {attempt}/{retries} failed"
            if is_throttling_error(e):
                note += f", throttled; pausing ~{backoff.penalize():.1f}s"
            if log:
                log(f"{note} after {time.time() - started:.2f}s: {e}")
            continue
        backoff.relax()
        return result

    raise MaxRetryErrorsException(f"All {retries} retry attempts failed.") from last_error


class ChatLlmClient:
    """
    One chat model behind a single call:

        text = client.invoke([SystemMessage(...), HumanMessage(...)])

    gpt-* names go to the OpenAI Responses API; anything else is a Vertex
    model served through ChatVertexAI.
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
    ):
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        self.model_name = model_name
        self._extra: Dict[str, Any] = {}
        self._vertex: Optional[ChatVertexAI] = None
        self._openai: Optional[OpenAI] = None

        if self.provider == "vertex":
            kwargs: Dict[str, Any] = dict(
                project=vertex_project or None, location=vertex_region, model_name=model_name, timeout=timeout
            )
            if temperature is not None:
                kwargs["temperature"] = temperature
            self._vertex = ChatVertexAI(**kwargs)
        else:
            self.model_name, self._extra = parse_model_name(model_name)
            # retries are ours, not the SDK's
            self._openai = OpenAI(max_retries=0, **({"timeout": timeout} if timeout is not None else {}))

    @staticmethod
    def _openai_input(messages: List[Any]) -> List[Dict[str, str]]:
        roles = {SystemMessage: "developer", AIMessage: "assistant"}
        return [{"role": roles.get(type(m), "user"), "content": str(m.content)} for m in messages]

    def _invoke_once(self, messages: List[Any]) -> str:
        if self._vertex is not None:
            reply = self._vertex.invoke(messages)
            return reply if isinstance(reply, str) else (getattr(reply, "content", "") or "")

        reply = self._openai.responses.create(
            model=self.model_name, input=self._openai_input(messages), **self._extra
        )
        return (getattr(reply, "output_text", "") or "").strip()

    def invoke(self, messages: List[Any], *, retries: int = 3) -> str:
        return call_with_retries_sync(
            lambda: self._invoke_once(messages),
            retries=retries,
            log=lambda msg: logger.warning(f"[{self.provider}:{self.model_name}] {msg}"),
        )


def build_chat_llm(
    model_name: str,
    *,
    vertex_project: str,
    vertex_region: str,
    timeout: Optional[float] = None,
    temperature: Optional[float] = None,
) -> Optional[ChatLlmClient]:
    """None when no model is configured or the client cannot be built."""
    if not model_name:
        return None
    try:
        return ChatLlmClient(
            model_name,
            vertex_project=vertex_project,
            vertex_region=vertex_region,
            timeout=timeout,
            temperature=temperature,
        )
    except Exception as e:
        logger.warning(f"Could not initialize chat model '{model_name}': {e}")
        return None


__all__ = [
    "ChatLlmClient",
    "HumanMessage",
    "SystemMessage",
    "build_chat_llm",
    "call_with_retries_sync",
]
