"""Text-generation client for page analysis (Ollama-compatible API)."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional

import httpx

from scrapture.config import settings
from scrapture.constants import ANALYSIS_CONTENT_LIMIT, ANALYSIS_SHORT_CONTENT_LIMIT

logger = logging.getLogger(__name__)

AnalysisTask = Literal["summarize", "classify", "extract", "sentiment"]

PROMPTS = {
    "summarize": (
        "Summarize the following content in 2-3 sentences:\n\n{content}",
        ANALYSIS_CONTENT_LIMIT,
    ),
    "classify": (
        "Classify this web page into ONE category (product, article, blog, news, "
        "homepage, contact, about, or other). Respond with only the category name:\n\n{content}",
        ANALYSIS_SHORT_CONTENT_LIMIT,
    ),
    "extract": (
        "Extract key information from this content as JSON with fields: title, main_topic, "
        "key_points (array), entities (people, organizations, locations):\n\n{content}",
        ANALYSIS_CONTENT_LIMIT,
    ),
    "sentiment": (
        "Analyze the sentiment of this content. Respond with only one word: "
        "positive, negative, or neutral:\n\n{content}",
        ANALYSIS_SHORT_CONTENT_LIMIT,
    ),
}


@dataclass
class AnalysisResult:
    """Outcome of one analysis request. Only the field for the task is set."""

    task: str
    summary: Optional[str] = None
    classification: Optional[str] = None
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    sentiment: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PageAnalyzer:
    """Client for a local text-generation service.

    Errors never propagate; they are logged and returned on the result.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ):
        """Initialize the analyzer.

        Args:
            base_url: Service root (default: settings.OLLAMA_API_URL)
            model: Model name (default: settings.OLLAMA_MODEL)
            client: Shared AsyncClient; a temporary one is used per call if None
            timeout: Request timeout in seconds
        """
        self.base_url = (base_url or settings.OLLAMA_API_URL).rstrip('/')
        self.model = model or settings.OLLAMA_MODEL
        self.client = client
        self.timeout = timeout

    async def analyze(
        self,
        content: str,
        task: AnalysisTask,
        custom_prompt: Optional[str] = None,
    ) -> AnalysisResult:
        """Run one analysis task over page content.

        Args:
            content: Text to analyze
            task: summarize, classify, extract or sentiment
            custom_prompt: Replaces the built-in prompt for the task

        Returns:
            AnalysisResult with the task's field set, or ``error`` on failure
        """
        if task not in PROMPTS:
            return AnalysisResult(task=task, error=f"Unknown analysis task: {task}")

        template, limit = PROMPTS[task]
        prompt = custom_prompt or template.format(content=content[:limit])

        try:
            text = await self._generate(prompt)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"Analysis '{task}' failed: {e}")
            return AnalysisResult(task=task, error=str(e) or type(e).__name__)

        result = AnalysisResult(task=task)
        if task == "summarize":
            result.summary = text.strip()
        elif task == "classify":
            result.classification = text.strip().lower()
        elif task == "sentiment":
            result.sentiment = text.strip().lower()
        else:
            result.extracted_data = self._parse_json_block(text)
        return result

    async def classify_page(self, body_text: str, title: str) -> str:
        """Classify a page; returns "unknown" if the service fails."""
        result = await self.analyze(f"Title: {title}\n\nContent: {body_text}", "classify")
        return result.classification or "unknown"

    async def _generate(self, prompt: str) -> str:
        payload = {"model": self.model, "prompt": prompt, "stream": False}
        url = f"{self.base_url}/api/generate"

        if self.client is not None:
            response = await self.client.post(url, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload)

        response.raise_for_status()
        return response.json()["response"]

    @staticmethod
    def _parse_json_block(text: str) -> Dict[str, Any]:
        match = re.search(r'\{[\s\S]*\}', text)
        if not match:
            return {"raw": text}
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            return {"raw": text}
