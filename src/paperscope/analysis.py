"""Analysis prompts and response parsing: JSON extraction, key aliasing, validation."""

from __future__ import annotations

import json
import logging
from typing import Any

from paperscope.errors import MalformedResponse
from paperscope.models import (
    ANALYSIS_FIELDS,
    AnalysisResult,
    ComparisonResult,
    ComparisonRow,
    PaperRecord,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Prompt Templates
# ============================================================================

ANALYSIS_PROMPT_TEMPLATE = (
    "Role: you are a senior AI researcher and a NeurIPS reviewer. I am a student "
    "who has just started reading this paper.\n"
    "Goal: act as my advisor and help me understand the attached PDF in depth, "
    "explaining it in plain language suitable for a beginner.\n\n"
    "Extract the following fields:\n"
    "1. type: the research area or kind of paper (e.g. LLM, object detection, RL, survey).\n"
    "2. title: the paper title.\n"
    "3. publication: the venue or journal (e.g. NeurIPS 2024, CVPR, arXiv).\n"
    "4. problem: the core problem, why it matters, and where existing methods fall short.\n"
    "5. solution_idea: the authors' key insight, explained intuitively before any formulas.\n"
    "6. contribution: the main contributions as a Markdown list.\n"
    "7. method: how the approach works, step by step.\n"
    "8. model_architecture: a vivid textual description of the architecture or pipeline figure.\n"
    "9. borrowable_ideas: tricks, modules or ideas worth reusing in future research.\n"
    "10. critique: strengths, weaknesses and limitations of the methodology.\n"
    "11. future_work: at least three worthwhile follow-up research questions.\n"
    "12. mind_map: a Markdown nested list covering problem, method, results, "
    "conclusions and contributions.\n\n"
    "Requirements:\n"
    "- Output strict JSON only.\n"
    "- Keys must be exactly: {keys}.\n"
    "- Write every value in {language}.\n"
    "- Use Markdown lists for the longer explanations and be thorough."
)

COMPARISON_PROMPT_TEMPLATE = (
    "Compare the following {count} papers.\n\n"
    "1. Write a detailed comparative summary (at least 300 words) covering the "
    "similarities and differences in method, idea and results.\n"
    "2. Fill a comparison table with one row per paper: title, method, framework "
    "(model architecture) and main ideas.\n\n"
    "Write every value in {language}.\n\n"
    "Data:\n{papers}\n\n"
    "Return strict JSON matching this shape:\n"
    '{{"summary": "string", "papers": [{{"title": "string", "method": "string", '
    '"framework": "string", "main_ideas": "string"}}]}}'
)

# Response schema for providers that accept one (managed mode)
ANALYSIS_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {name: {"type": "STRING"} for name in ANALYSIS_FIELDS},
    "required": list(ANALYSIS_FIELDS),
}

COMPARISON_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "summary": {"type": "STRING"},
        "papers": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "title": {"type": "STRING"},
                    "method": {"type": "STRING"},
                    "framework": {"type": "STRING"},
                    "main_ideas": {"type": "STRING"},
                },
                "required": ["title", "method", "framework", "main_ideas"],
            },
        },
    },
    "required": ["summary", "papers"],
}


def build_analysis_prompt(language: str = "Simplified Chinese") -> str:
    """Build the single-paper analysis prompt."""
    return ANALYSIS_PROMPT_TEMPLATE.format(
        keys=", ".join(ANALYSIS_FIELDS),
        language=language or "English",
    )


def _summary_block(index: int, record: PaperRecord) -> str:
    analysis = record.analysis or AnalysisResult()
    return (
        f"Paper {index}:\n"
        f"Title: {analysis.title or record.file_name}\n"
        f"Method: {analysis.method or 'N/A'}\n"
        f"Model Architecture: {analysis.model_architecture or 'N/A'}\n"
        f"Solution Idea: {analysis.solution_idea or 'N/A'}\n"
        f"Key Ideas: {analysis.borrowable_ideas or 'N/A'}\n"
        f"Critique: {analysis.critique or 'N/A'}\n"
        f"Future Work: {analysis.future_work or 'N/A'}"
    )


def build_comparison_prompt(
    records: list[PaperRecord], language: str = "Simplified Chinese"
) -> str:
    """Build a comparison prompt from existing summaries (no file content)."""
    blocks = "\n\n".join(_summary_block(i, r) for i, r in enumerate(records, start=1))
    return COMPARISON_PROMPT_TEMPLATE.format(
        count=len(records),
        language=language or "English",
        papers=blocks,
    )


# ============================================================================
# Key Aliasing
# ============================================================================

# Exact (lowercased, stripped) key → canonical field
EXACT_KEY_ALIASES: dict[str, str] = {
    "type": "type",
    "类型": "type",
    "领域": "type",
    "title": "title",
    "标题": "title",
    "题目": "title",
    "publication": "publication",
    "venue": "publication",
    "journal": "publication",
    "发表": "publication",
    "会议": "publication",
    "刊物": "publication",
    "problem": "problem",
    "痛点": "problem",
    "问题": "problem",
    "solution": "solution_idea",
    "solution_idea": "solution_idea",
    "idea": "solution_idea",
    "思路": "solution_idea",
    "解决": "solution_idea",
    "contribution": "contribution",
    "贡献": "contribution",
    "创新": "contribution",
    "method": "method",
    "方法": "method",
    "技术": "method",
    "model": "model_architecture",
    "model_architecture": "model_architecture",
    "architecture": "model_architecture",
    "模型": "model_architecture",
    "架构": "model_architecture",
    "borrowable": "borrowable_ideas",
    "borrowable_ideas": "borrowable_ideas",
    "ideas": "borrowable_ideas",
    "key_ideas": "borrowable_ideas",
    "借鉴": "borrowable_ideas",
    "启发": "borrowable_ideas",
    "critique": "critique",
    "evaluation": "critique",
    "评估": "critique",
    "批判": "critique",
    "局限": "critique",
    "不足": "critique",
    "future_work": "future_work",
    "future": "future_work",
    "未来": "future_work",
    "方向": "future_work",
    "questions": "future_work",
    "mind_map": "mind_map",
    "mindmap": "mind_map",
    "map": "mind_map",
    "思维导图": "mind_map",
    "脑图": "mind_map",
    "结构": "mind_map",
}

# Substring rules, evaluated top to bottom when no exact alias matches.
# Order is significant: "solution_ideas" must hit solution before idea,
# "architecture_idea" must hit architecture before idea.
KEY_PATTERN_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("architect", "模型", "架构"), "model_architecture"),
    (("solution", "思路"), "solution_idea"),
    (("borrow", "idea", "借鉴"), "borrowable_ideas"),
    (("contrib", "贡献"), "contribution"),
    (("problem", "问题"), "problem"),
    (("method", "方法"), "method"),
    (("publ", "venue", "发表"), "publication"),
    (("title", "标题"), "title"),
    (("type", "类型"), "type"),
    (("eval", "critique", "评估", "批判"), "critique"),
    (("future", "未来", "方向"), "future_work"),
    (("mind", "map", "导图"), "mind_map"),
)

_TITLE_KEYS = frozenset({"title", "标题", "题目"})
_PROBLEM_KEYS = frozenset({"problem", "问题", "痛点", "description", "abstract"})
MAX_SEARCH_DEPTH = 8


def canonical_key(key: str) -> str | None:
    """Return the canonical analysis field for a raw response key, or None."""
    lowered = key.strip().lower()
    exact = EXACT_KEY_ALIASES.get(lowered)
    if exact is not None:
        return exact
    for patterns, target in KEY_PATTERN_RULES:
        if any(p in lowered for p in patterns):
            return target
    return None


# ============================================================================
# Response Parsing
# ============================================================================


def extract_json_object(text: str) -> Any:
    """Parse the outermost JSON object in ``text``.

    Tolerates prose and Markdown fences around the object by slicing from the
    first ``{`` to the last ``}``.
    """
    if not text or not text.strip():
        raise MalformedResponse("empty response")
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise MalformedResponse("no JSON object found in response")
    try:
        return json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        logger.debug("Unparseable model output: %.500s", text)
        raise MalformedResponse(f"invalid JSON: {e.msg}") from e


def _looks_like_result(obj: dict[str, Any]) -> bool:
    keys = {str(k).strip().lower() for k in obj}
    return bool(keys & _TITLE_KEYS) and bool(keys & _PROBLEM_KEYS)


def find_result_object(obj: Any, max_depth: int = MAX_SEARCH_DEPTH) -> dict[str, Any] | None:
    """Depth-first search for the first dict with a title-like and problem-like key."""
    if max_depth < 0:
        return None
    if isinstance(obj, dict):
        if _looks_like_result(obj):
            return obj
        children = obj.values()
    elif isinstance(obj, list):
        children = obj
    else:
        return None
    for child in children:
        found = find_result_object(child, max_depth - 1)
        if found is not None:
            return found
    return None


def _render_value(value: Any) -> str:
    """Render a JSON value as display text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return "\n".join(f"- {_render_value(item)}" for item in value)
    return json.dumps(value, ensure_ascii=False)


def normalize_analysis(data: Any) -> AnalysisResult:
    """Map a parsed response onto AnalysisResult and validate it.

    Raises MalformedResponse when no non-empty title can be found, even if the
    rest of the object is populated.
    """
    source = find_result_object(data)
    if source is None:
        if not isinstance(data, dict):
            raise MalformedResponse("response is not a JSON object")
        source = data

    values: dict[str, str] = {}
    extra: dict[str, Any] = {}
    for raw_key, raw_value in source.items():
        target = canonical_key(str(raw_key))
        if target is None:
            extra[str(raw_key)] = raw_value
        elif target not in values or not values[target]:
            # First non-empty value wins when several keys alias one field
            values[target] = _render_value(raw_value)

    result = AnalysisResult(**values, extra=extra)
    if not result.title:
        raise MalformedResponse("analysis completed but returned no title")
    return result


def parse_analysis_response(text: str) -> AnalysisResult:
    """Extract, normalize and validate a single-paper analysis response."""
    return normalize_analysis(extract_json_object(text))


def parse_comparison_response(text: str, expected_rows: int | None = None) -> ComparisonResult:
    """Parse a comparison response into a ComparisonResult."""
    data = extract_json_object(text)
    if not isinstance(data, dict):
        raise MalformedResponse("comparison response is not a JSON object")
    summary = data.get("summary")
    rows_raw = data.get("papers")
    if not isinstance(summary, str) or not summary.strip():
        raise MalformedResponse("comparison response has no summary")
    if not isinstance(rows_raw, list):
        raise MalformedResponse("comparison response has no papers table")
    rows = [
        ComparisonRow(
            title=_render_value(row.get("title")),
            method=_render_value(row.get("method")),
            framework=_render_value(row.get("framework")),
            main_ideas=_render_value(row.get("main_ideas")),
        )
        for row in rows_raw
        if isinstance(row, dict)
    ]
    if expected_rows is not None and len(rows) != expected_rows:
        logger.warning("Comparison returned %d rows for %d papers", len(rows), expected_rows)
    return ComparisonResult(summary=summary.strip(), papers=rows)


__all__ = [
    "ANALYSIS_PROMPT_TEMPLATE",
    "ANALYSIS_RESPONSE_SCHEMA",
    "COMPARISON_PROMPT_TEMPLATE",
    "COMPARISON_RESPONSE_SCHEMA",
    "EXACT_KEY_ALIASES",
    "KEY_PATTERN_RULES",
    "build_analysis_prompt",
    "build_comparison_prompt",
    "canonical_key",
    "extract_json_object",
    "find_result_object",
    "normalize_analysis",
    "parse_analysis_response",
    "parse_comparison_response",
]
