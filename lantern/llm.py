"""Generative model adapters consumed by the generation controller."""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Literal, Optional, Union

from openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from .cancellation import CancellationToken
from .models import GenerationParams


logger = logging.getLogger(__name__)


@dataclass
class Batch:
    """The model pushed fragments through ``on_text`` and assembled the final text itself."""
    text: str
    kind: Literal["batch"] = "batch"


@dataclass
class Stream:
    """Fragments for the controller to drain, checking cancellation between them."""
    fragments: Iterator[str]
    kind: Literal["stream"] = "stream"

    def close(self) -> None:
        close = getattr(self.fragments, "close", None)
        if close is not None:
            close()


ModelOutput = Union[Batch, Stream]


class GenerativeModel(ABC):
    """A chat model producing incremental text.

    Implementations observe ``cancellation`` between token emissions and
    either return early or raise ``GenerationCancelled``.
    """

    name: str = "model"

    @abstractmethod
    def generate(
        self,
        messages: List[Dict[str, str]],
        params: GenerationParams,
        on_text: Callable[[str], None],
        cancellation: CancellationToken,
    ) -> ModelOutput:
        """Start generation for ``messages``."""


class OpenAIChatModel(GenerativeModel):
    """
    Streaming chat completions from OpenAI or any OpenAI-compatible server.

    Point ``base_url`` at a local llama.cpp, vLLM or Ollama server to keep
    generation on the machine; those servers also honour
    ``repetition_penalty``.

    Example:
        >>> model = OpenAIChatModel("llama3.2", base_url="http://localhost:11434/v1")
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        openai_api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.name = model
        self.base_url = base_url
        api_key = openai_api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key and not base_url:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                "or pass openai_api_key parameter."
            )
        self.client = OpenAI(api_key=api_key or "not-needed", base_url=base_url)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    def _open_stream(self, messages: List[Dict[str, str]], params: GenerationParams):
        extra_body = {"repetition_penalty": params.repetition_penalty} if self.base_url else None
        return self.client.chat.completions.create(
            model=self.name,
            messages=messages,
            max_tokens=params.max_new_tokens,
            temperature=params.temperature,
            top_p=params.top_p,
            stream=True,
            extra_body=extra_body,
        )

    def generate(
        self,
        messages: List[Dict[str, str]],
        params: GenerationParams,
        on_text: Callable[[str], None],
        cancellation: CancellationToken,
    ) -> ModelOutput:
        response = self._open_stream(messages, params)
        return Stream(self._fragments(response, cancellation))

    @staticmethod
    def _fragments(response, cancellation: CancellationToken) -> Iterator[str]:
        try:
            for event in response:
                if cancellation.is_cancelled:
                    logger.debug("Closing completion stream after cancellation")
                    break
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content
                if delta:
                    yield delta
        finally:
            response.close()
