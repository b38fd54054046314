"""Thin Gemini client used for photo description and search ranking."""
import logging
import re
from typing import Any, List, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from src.models.enums import AnalysisErrorCode
from src.services.analysis.errors import AnalysisError, classify_exception

logger = logging.getLogger(__name__)


_FENCE_START = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_END = re.compile(r"\n?```\s*$")


class GeminiError(AnalysisError):
    """Gemini call failed."""


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence from a model response."""
    text = (text or "").strip()
    text = _FENCE_START.sub("", text)
    text = _FENCE_END.sub("", text)
    return text.strip()


class GeminiClient:
    """Generates text from prompts (optionally with an image) with classified errors."""

    def __init__(self, api_key: Optional[str], model_name: str = "gemini-2.0-flash", model=None):
        """
        Initialize Gemini client.

        Args:
            api_key: Gemini API key
            model_name: Model to use
            model: Pre-built ``GenerativeModel`` (tests)
        """
        self.model_name = model_name
        self.model = model
        if model is not None:
            return

        if not api_key:
            logger.warning("GEMINI_API_KEY is not set; Gemini calls will fail")
            return

        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name)
        logger.info(f"Gemini client initialized for model {model_name}")

    def generate(
        self,
        parts: List[Any],
        temperature: float = 0.2,
        max_output_tokens: int = 4096,
        timeout: float = 60,
    ) -> str:
        """
        Run one generation and return its text.

        Raises:
            GeminiError: TIMEOUT, RATE_LIMIT or API_ERROR
        """
        if self.model is None:
            raise GeminiError("GEMINI_API_KEY is not set", AnalysisErrorCode.API_ERROR)

        try:
            response = self.model.generate_content(
                parts,
                generation_config={
                    "temperature": temperature,
                    "max_output_tokens": max_output_tokens,
                },
                request_options={"timeout": timeout},
            )
        except google_exceptions.DeadlineExceeded as e:
            raise GeminiError(f"Request timed out after {timeout}s", AnalysisErrorCode.TIMEOUT, original=e)
        except (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests) as e:
            raise GeminiError("Gemini API rate limit exceeded", AnalysisErrorCode.RATE_LIMIT, original=e)
        except Exception as e:
            code = classify_exception(e)
            raise GeminiError(f"Gemini API error: {e}", code, original=e)

        try:
            text = response.text
        except ValueError as e:
            # Raised when the candidate was blocked or carries no text part
            raise GeminiError(f"Empty response from Gemini API: {e}", AnalysisErrorCode.API_ERROR, original=e)

        if not text:
            raise GeminiError("Empty response from Gemini API", AnalysisErrorCode.API_ERROR)
        return text
