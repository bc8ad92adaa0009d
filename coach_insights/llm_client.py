"""
Coach Insights LLM Client Interface
===================================

Provider-agnostic interface to the remote completion service.
Every call carries a client-side timeout; failures come back as an
LLMResponse with `error` set instead of raising.
"""

from typing import Protocol, Optional, Dict, Any, List
from dataclasses import dataclass
import logging
import google.generativeai as genai


@dataclass
class LLMResponse:
    """Response from LLM generation."""
    text: str
    input_tokens: int
    output_tokens: int
    model: str
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.text)


class LLMClient(Protocol):
    """
    Protocol for LLM clients.
    All implementations must provide generate() method.
    """

    def generate(
        self,
        prompt: str,
        max_tokens: int = 500,
        temperature: float = 0.2,
        timeout_s: Optional[float] = None,
    ) -> LLMResponse:
        """Generate a response from the LLM."""
        ...


class GeminiClient:
    """Gemini LLM client implementation."""

    def __init__(self, api_key: str, model: str = "gemini-1.5-flash", system_instruction: Optional[str] = None):
        self.api_key = api_key
        self.model_name = model
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(
            model_name=model,
            system_instruction=system_instruction
        )

    def generate(
        self,
        prompt: str,
        max_tokens: int = 500,
        temperature: float = 0.2,
        timeout_s: Optional[float] = None,
    ) -> LLMResponse:
        """Generate response using Gemini."""
        config = genai.GenerationConfig(
            max_output_tokens=max_tokens,
            temperature=temperature,
            response_mime_type="application/json",
        )
        request_options = {"timeout": timeout_s} if timeout_s else None

        try:
            response = self.model.generate_content(
                prompt,
                generation_config=config,
                request_options=request_options,
            )

            # Blocked responses or empty candidates
            if not response.candidates or not response.candidates[0].content.parts:
                finish_reason = response.candidates[0].finish_reason if response.candidates else "UNKNOWN"
                return LLMResponse(
                    text="",
                    input_tokens=0,
                    output_tokens=0,
                    model=self.model_name,
                    error=f"empty response (finish_reason: {finish_reason})",
                )

            input_tokens = 0
            output_tokens = 0
            if hasattr(response, 'usage_metadata'):
                input_tokens = getattr(response.usage_metadata, 'prompt_token_count', 0)
                output_tokens = getattr(response.usage_metadata, 'candidates_token_count', 0)

            return LLMResponse(
                text=response.text,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                model=self.model_name
            )
        except Exception as e:
            logging.warning(f"Gemini call failed: {e}")
            return LLMResponse(
                text="",
                input_tokens=0,
                output_tokens=0,
                model=self.model_name,
                error=str(e),
            )


class MockLLMClient:
    """Mock LLM client for testing. Replays queued responses in order."""

    def __init__(self, responses: Optional[List[str]] = None, error: Optional[str] = None):
        self.model_name = "mock"
        self.responses = list(responses or [])
        self.error = error
        self.prompts: List[str] = []

    @property
    def last_prompt(self) -> Optional[str]:
        return self.prompts[-1] if self.prompts else None

    def generate(
        self,
        prompt: str,
        max_tokens: int = 500,
        temperature: float = 0.2,
        timeout_s: Optional[float] = None,
    ) -> LLMResponse:
        self.prompts.append(prompt)

        if self.error:
            return LLMResponse(text="", input_tokens=0, output_tokens=0, model="mock", error=self.error)

        text = self.responses.pop(0) if self.responses else ""
        return LLMResponse(
            text=text,
            input_tokens=len(prompt) // 4,
            output_tokens=len(text) // 4,
            model="mock"
        )
