"""Remote analysis client: resolve content, call the provider, parse the result."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from paperscope.analysis import (
    ANALYSIS_RESPONSE_SCHEMA,
    COMPARISON_RESPONSE_SCHEMA,
    build_analysis_prompt,
    build_comparison_prompt,
    parse_analysis_response,
    parse_comparison_response,
)
from paperscope.llm_providers import LLMProvider
from paperscope.models import AnalysisResult, ComparisonResult, LLMSettings, PaperRecord

logger = logging.getLogger(__name__)

FileFetcher = Callable[[str], Awaitable[bytes]]
ProviderFactory = Callable[[LLMSettings], Awaitable[LLMProvider]]


class AnalysisClient:
    """Turn paper content into a validated AnalysisResult.

    Either returns a result with a non-empty title or raises a classified
    PaperScopeError; there is no partial success.
    """

    def __init__(self, *, provider_factory: ProviderFactory, fetch_file: FileFetcher) -> None:
        self._provider_factory = provider_factory
        self._fetch_file = fetch_file

    async def resolve_content(self, content: bytes | str) -> bytes:
        """Return raw bytes, downloading string references first (FetchFailed on error)."""
        if isinstance(content, bytes):
            return content
        return await self._fetch_file(content)

    async def analyze(self, content: bytes | str, settings: LLMSettings) -> AnalysisResult:
        document = await self.resolve_content(content)
        provider = await self._provider_factory(settings)
        text = await provider.generate(
            build_analysis_prompt(settings.language),
            document=document,
            schema=ANALYSIS_RESPONSE_SCHEMA,
        )
        result = parse_analysis_response(text)
        logger.debug("Analysis parsed: %s", result.title)
        return result

    async def compare(self, records: list[PaperRecord], settings: LLMSettings) -> ComparisonResult:
        """Compare analyzed papers from their summaries; no file is re-sent."""
        analyzed = [r for r in records if r.analysis is not None]
        if len(analyzed) < 2:
            raise ValueError("comparison needs at least two analyzed papers")
        provider = await self._provider_factory(settings)
        text = await provider.generate(
            build_comparison_prompt(analyzed, settings.language),
            schema=COMPARISON_RESPONSE_SCHEMA,
        )
        return parse_comparison_response(text, expected_rows=len(analyzed))


__all__ = [
    "AnalysisClient",
    "FileFetcher",
    "ProviderFactory",
]
