"""
Text generation collaborators used for path narration.

``LocalTextGenerator`` runs a Hugging Face causal language model in
process. Anything with a ``complete(prompt) -> str`` method can replace
it, e.g. a client for a hosted model.
"""

import gc
import threading
import time
from pathlib import Path
from typing import Protocol

import torch
from transformers import (
    AutoModelForCausalLM,
    AutoTokenizer,
    PreTrainedModel,
    PreTrainedTokenizerBase,
)

from intel_graph.config import Settings
from intel_graph.core.exceptions import ReasoningError
from intel_graph.utils.logging import get_logger
from intel_graph.utils.metrics import Metrics

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an analyst explaining how entities in a knowledge graph are "
    "connected. Answer with a single JSON object and nothing else."
)

_DTYPES = {
    "float32": torch.float32,
    "float16": torch.float16,
    "bfloat16": torch.bfloat16,
}


class TextGenerator(Protocol):
    """Completes a prompt. Treated as unreliable by every caller."""

    def complete(self, prompt: str) -> str:
        ...


class LocalTextGenerator:
    """
    Chat model wrapper built on transformers.

    The model and tokenizer load lazily on the first call; loading is
    guarded by a lock.

    Example:
        >>> generator = LocalTextGenerator.from_settings(settings)
        >>> text = generator.complete("Explain: Acme (organization) --[competes]--> Globex")
    """

    def __init__(
        self,
        model_name: str = "Qwen/Qwen2.5-1.5B-Instruct",
        device: str = "cpu",
        torch_dtype: str = "float32",
        max_new_tokens: int = 512,
        temperature: float = 0.3,
        do_sample: bool = False,
        trust_remote_code: bool = False,
        cache_dir: Path | None = None,
    ) -> None:
        self.model_name = model_name
        self.device = device
        self.torch_dtype = _DTYPES.get(torch_dtype, torch.float32)
        self.max_new_tokens = max_new_tokens
        self.temperature = temperature
        self.do_sample = do_sample
        self.trust_remote_code = trust_remote_code
        self.cache_dir = str(cache_dir) if cache_dir else None

        self._model: PreTrainedModel | None = None
        self._tokenizer: PreTrainedTokenizerBase | None = None
        self._lock = threading.Lock()
        self._loaded = False

        logger.info(
            f"LocalTextGenerator initialized (model={model_name}, device={device}, "
            f"dtype={torch_dtype})"
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalTextGenerator":
        reasoning = settings.reasoning
        return cls(
            model_name=reasoning.model_name,
            device=reasoning.device,
            torch_dtype=reasoning.torch_dtype,
            max_new_tokens=reasoning.max_new_tokens,
            temperature=reasoning.temperature,
            do_sample=reasoning.do_sample,
            trust_remote_code=reasoning.trust_remote_code,
            cache_dir=reasoning.cache_dir,
        )

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self) -> None:
        """
        Load model and tokenizer.

        Raises:
            ReasoningError: If loading fails
        """
        if self._loaded:
            return

        with self._lock:
            if self._loaded:
                return

            logger.info(f"Loading model: {self.model_name}")
            try:
                self._tokenizer = AutoTokenizer.from_pretrained(
                    self.model_name,
                    trust_remote_code=self.trust_remote_code,
                    cache_dir=self.cache_dir,
                )
                if self._tokenizer.pad_token is None:
                    self._tokenizer.pad_token = self._tokenizer.eos_token

                self._model = AutoModelForCausalLM.from_pretrained(
                    self.model_name,
                    torch_dtype=self.torch_dtype,
                    low_cpu_mem_usage=True,
                    trust_remote_code=self.trust_remote_code,
                    cache_dir=self.cache_dir,
                    device_map=self.device if self.device != "cpu" else None,
                )
                if self.device == "cpu":
                    self._model = self._model.to(self.device)
                self._model.eval()
            except Exception as e:
                logger.error(f"Failed to load model: {e}")
                raise ReasoningError(
                    f"Failed to load model {self.model_name}",
                    model_name=self.model_name,
                    details={"error": str(e)},
                ) from e

            self._loaded = True
            logger.info("Model loaded successfully")

    def unload(self) -> None:
        """Unload model to free memory."""
        with self._lock:
            if not self._loaded:
                return
            del self._model
            del self._tokenizer
            self._model = None
            self._tokenizer = None
            self._loaded = False

            gc.collect()
            if torch.cuda.is_available():
                torch.cuda.empty_cache()
            logger.info("Model unloaded")

    def complete(self, prompt: str) -> str:
        """
        Generate a reply to ``prompt``.

        Raises:
            ReasoningError: If generation fails
        """
        self.load()
        metrics = Metrics.get()
        start_time = time.perf_counter()

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        try:
            prompt_text = self._tokenizer.apply_chat_template(
                messages,
                tokenize=False,
                add_generation_prompt=True,
            )
            inputs = self._tokenizer(prompt_text, return_tensors="pt", truncation=True)
            inputs = {k: v.to(self.device) for k, v in inputs.items()}
            prompt_tokens = inputs["input_ids"].shape[1]

            generate_kwargs = {
                "max_new_tokens": self.max_new_tokens,
                "do_sample": self.do_sample,
            }
            if self.do_sample:
                # Temperature must be > 0 when sampling
                generate_kwargs["temperature"] = max(self.temperature, 0.01)

            with torch.no_grad():
                outputs = self._model.generate(
                    **inputs,
                    **generate_kwargs,
                    pad_token_id=self._tokenizer.pad_token_id,
                    eos_token_id=self._tokenizer.eos_token_id,
                )
            text = self._tokenizer.decode(outputs[0, prompt_tokens:], skip_special_tokens=True)
        except Exception as e:
            logger.error(f"Generation failed: {e}")
            metrics.increment("reasoning_errors")
            raise ReasoningError(
                "Text generation failed",
                model_name=self.model_name,
                details={"error": str(e)},
            ) from e

        metrics.increment("reasoning_calls")
        metrics.observe("reasoning_latency_ms", (time.perf_counter() - start_time) * 1000)
        return text.strip()

    def __repr__(self) -> str:
        status = "loaded" if self._loaded else "not loaded"
        return f"LocalTextGenerator(model={self.model_name!r}, {status})"
