"""Completion backends used by the classifier and the query rewriter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from ragcore.models import ChatMessage

LOGGER = logging.getLogger(__name__)


class CompletionUnavailableError(RuntimeError):
    """Raised when a completion backend has no model to call."""


@dataclass(frozen=True)
class CompletionConfig:
    """Configuration for local completion models."""

    model: str = "Qwen/Qwen2.5-1.8B-Instruct"
    use_model: bool = False
    device: str | None = None


class CompletionBackend(Protocol):
    """Protocol describing chat completion behaviour."""

    def complete(self, messages: Sequence[ChatMessage], *, temperature: float = 0.0, max_tokens: int = 256) -> str:
        """Return the model's reply to ``messages``."""


def _to_langchain(message: ChatMessage) -> BaseMessage:
    if message.role == "system":
        return SystemMessage(content=message.content)
    if message.role == "assistant":
        return AIMessage(content=message.content)
    return HumanMessage(content=message.content)


class LangChainChatBackend:
    """Completion backend wrapping any LangChain chat model."""

    def __init__(self, model: BaseChatModel) -> None:
        self._model = model

    def complete(self, messages: Sequence[ChatMessage], *, temperature: float = 0.0, max_tokens: int = 256) -> str:
        response = self._model.invoke(
            [_to_langchain(message) for message in messages],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        content = response.content
        if isinstance(content, list):
            content = "".join(part if isinstance(part, str) else str(part.get("text", "")) for part in content)
        return str(content)


class QwenCompletionBackend:
    """Completion backend running a local Qwen chat model via Transformers."""

    def __init__(self, config: CompletionConfig | None = None) -> None:
        self._config = config or CompletionConfig()
        self._tokenizer = None
        self._model = None
        if not self._config.use_model:
            LOGGER.info("QwenCompletionBackend disabled; completions will be unavailable.")
            return
        try:
            from transformers import AutoModelForCausalLM, AutoTokenizer

            self._tokenizer = AutoTokenizer.from_pretrained(
                self._config.model,
                trust_remote_code=True,
            )
            self._model = AutoModelForCausalLM.from_pretrained(
                self._config.model,
                trust_remote_code=True,
            )
            if self._tokenizer.pad_token is None and self._tokenizer.eos_token is not None:
                self._tokenizer.pad_token = self._tokenizer.eos_token
            if getattr(self._model.config, "pad_token_id", None) is None and self._tokenizer.pad_token_id is not None:
                self._model.config.pad_token_id = self._tokenizer.pad_token_id
            if self._config.device:
                self._model.to(self._config.device)
            LOGGER.info("Loaded completion model %s", self._config.model)
        except Exception as exc:  # pragma: no cover - defensive import
            LOGGER.warning("Completion model unavailable: %s", exc)
            self._tokenizer = None
            self._model = None

    @property
    def is_loaded(self) -> bool:
        return self._tokenizer is not None and self._model is not None

    def complete(self, messages: Sequence[ChatMessage], *, temperature: float = 0.0, max_tokens: int = 256) -> str:
        if not self.is_loaded:
            raise CompletionUnavailableError(f"completion model {self._config.model} is not loaded")
        prompt = self._tokenizer.apply_chat_template(
            [{"role": message.role, "content": message.content} for message in messages],
            tokenize=False,
            add_generation_prompt=True,
        )
        import torch

        tokenized = self._tokenizer(prompt, return_tensors="pt", padding=True)
        input_ids = tokenized.input_ids
        attention_mask = tokenized.attention_mask
        prompt_length = input_ids.shape[1]
        if self._config.device:
            input_ids = input_ids.to(self._config.device)
            attention_mask = attention_mask.to(self._config.device)
        # temperature=0 means greedy decoding
        sampling = {"do_sample": True, "temperature": temperature} if temperature > 0 else {"do_sample": False}
        with torch.no_grad():
            output = self._model.generate(
                input_ids,
                attention_mask=attention_mask,
                max_new_tokens=max_tokens,
                **sampling,
            )
        generated_tokens = output[0][prompt_length:]
        return self._tokenizer.decode(generated_tokens, skip_special_tokens=True).strip()
