"""Per-backend prompt rewriting.

Each backend family prefers a slightly different prompt shape. A
``PromptStyle`` describes that shape as data and ``optimize_prompt`` applies
it in a fixed order: structure, context, cue suffix, documents, length. Every
transform that fires is recorded with a short before/after sample.
"""

from __future__ import annotations

from dataclasses import dataclass

from ai_router.schemas import (
    ConversationContext,
    PromptOptimization,
    PromptTransform,
    PromptTransformType,
)

SAMPLE_CHARS = 100
CONTEXT_SAMPLE_CHARS = 50
DOCUMENT_SNIPPET_CHARS = 200
SECTION_MIN_CHARS = 1000


@dataclass(frozen=True)
class PromptStyle:
    # Structure wrapper, "{prompt}" is substituted. Skipped when any marker is present.
    structure_template: str | None = None
    structure_skip_markers: tuple[str, ...] = ()
    structure_min_length: int = 0
    structure_type: PromptTransformType = PromptTransformType.STRUCTURE
    structure_description: str = "Added response structure"

    # Branch summary injection, "{summary}" and "{prompt}" are substituted.
    context_template: str | None = None
    context_type: PromptTransformType = PromptTransformType.SPECIFICITY
    context_description: str = "Added conversation context for continuity"

    # Suffix appended when the original prompt contains (or, negated, lacks) a cue word.
    cue_words: tuple[str, ...] = ()
    cue_suffix: str = ""
    cue_negated: bool = False
    cue_type: PromptTransformType = PromptTransformType.EXAMPLES
    cue_description: str = "Added answer guidance"

    include_documents: bool = False

    max_length: int | None = None
    truncation_suffix: str = "..."
    # Large-context backends get section headings instead of truncation.
    section_long_prompts: bool = False

    improvement_per_transform: float = 0.1


def _sample(text: str, limit: int = SAMPLE_CHARS) -> str:
    return text[:limit] + "..."


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(marker.lower() in lowered for marker in markers)


def _split_sections(prompt: str) -> str:
    paragraphs = [p for p in prompt.split("\n\n") if p.strip()]
    sections = []
    for i, paragraph in enumerate(paragraphs, start=1):
        if len(paragraph) > SECTION_MIN_CHARS:
            sections.append(f"## Section {i}\n{paragraph}")
        else:
            sections.append(paragraph)
    return "\n\n".join(sections)


def optimize_prompt(
    style: PromptStyle,
    backend: str,
    prompt: str,
    context: ConversationContext | None = None,
) -> PromptOptimization:
    transforms: list[PromptTransform] = []
    optimized = prompt

    if (
        style.structure_template
        and len(prompt) > style.structure_min_length
        and not _contains_any(prompt, style.structure_skip_markers)
    ):
        structured = style.structure_template.format(prompt=optimized)
        transforms.append(
            PromptTransform(
                type=style.structure_type,
                description=style.structure_description,
                before=_sample(optimized),
                after=_sample(structured),
            )
        )
        optimized = structured

    summary = ""
    if context is not None and context.branch_context is not None:
        summary = context.branch_context.branch_summary
    if style.context_template and summary:
        with_context = style.context_template.format(summary=summary, prompt=optimized)
        transforms.append(
            PromptTransform(
                type=style.context_type,
                description=style.context_description,
                before=_sample(optimized, CONTEXT_SAMPLE_CHARS),
                after=_sample(with_context, CONTEXT_SAMPLE_CHARS),
            )
        )
        optimized = with_context

    if style.cue_words and _contains_any(prompt, style.cue_words) != style.cue_negated:
        with_cue = optimized + style.cue_suffix
        transforms.append(
            PromptTransform(
                type=style.cue_type,
                description=style.cue_description,
                before=f"{len(optimized)} characters",
                after=f"{len(with_cue)} characters",
            )
        )
        optimized = with_cue

    if style.include_documents and context is not None and context.relevant_documents:
        listing = "\n\n".join(
            f"Document {i}: {doc.content[:DOCUMENT_SNIPPET_CHARS]}..."
            for i, doc in enumerate(context.relevant_documents, start=1)
        )
        with_docs = f"## Relevant Documents\n{listing}\n\n{optimized}"
        transforms.append(
            PromptTransform(
                type=PromptTransformType.CONTEXT,
                description=f"Included {len(context.relevant_documents)} relevant documents",
                before=f"{len(optimized)} characters",
                after=f"{len(with_docs)} characters",
            )
        )
        optimized = with_docs

    if style.max_length is not None and len(optimized) > style.max_length:
        before = len(optimized)
        if style.section_long_prompts:
            optimized = _split_sections(optimized)
            description = "Split long prompt into headed sections"
            transform_type = PromptTransformType.STRUCTURE
        else:
            optimized = optimized[: style.max_length] + style.truncation_suffix
            description = "Truncated prompt to fit within optimal context length"
            transform_type = PromptTransformType.LENGTH
        transforms.append(
            PromptTransform(
                type=transform_type,
                description=description,
                before=f"{before} characters",
                after=f"{len(optimized)} characters",
            )
        )

    return PromptOptimization(
        backend=backend,
        original_prompt=prompt,
        optimized_prompt=optimized,
        transforms=transforms,
        estimated_improvement=round(len(transforms) * style.improvement_per_transform, 4),
    )


CLAUDE_STYLE = PromptStyle(
    structure_template=(
        "{prompt}\n\n<thinking>\nLet me think through this step by step:\n"
        "1. First, I'll analyze the key components of this request\n"
        "2. Then I'll provide a comprehensive response\n</thinking>"
    ),
    structure_skip_markers=("<thinking>",),
    structure_min_length=200,
    structure_description="Added thinking structure for complex requests",
    context_template="Previous conversation context: {summary}\n\nCurrent request: {prompt}",
    cue_words=("analyze", "compare", "evaluate"),
    cue_suffix=(
        "\n\nPlease provide your analysis in a clear, structured format "
        "with specific examples and reasoning."
    ),
    cue_description="Requested structured analysis with examples",
    max_length=50_000,
    improvement_per_transform=0.12,
)

GPT4_STYLE = PromptStyle(
    structure_template=(
        "**Task:** {prompt}\n\n**Context:** Please provide a comprehensive "
        "response that addresses the request above."
    ),
    structure_skip_markers=("###", "**Task:**"),
    structure_type=PromptTransformType.FORMAT,
    structure_description="Added markdown task structure",
    context_template="**Previous Context:** {summary}\n\n{prompt}",
    max_length=10_000,
    improvement_per_transform=0.15,
)

GEMINI_STYLE = PromptStyle(
    structure_template=(
        "{prompt}\n\n**Please provide a well-structured response with clear "
        "headings and bullet points where appropriate.**"
    ),
    structure_skip_markers=("**", "##"),
    structure_min_length=200,
    structure_description="Requested a well-structured response",
    context_template="## Context\n{summary}\n\n## Current Request\n{prompt}",
    context_type=PromptTransformType.CONTEXT,
    cue_words=("analyze", "solve", "explain"),
    cue_suffix="\n\nPlease think through this step by step and provide your reasoning.",
    cue_type=PromptTransformType.REASONING,
    cue_description="Encouraged step-by-step reasoning",
    include_documents=True,
    max_length=100_000,
    section_long_prompts=True,
    improvement_per_transform=0.15,
)

KIMI_STYLE = PromptStyle(
    structure_template=(
        "Please read the following request carefully.\n\n{prompt}\n\n"
        "Please give a detailed and well-organized answer."
    ),
    structure_skip_markers=("please",),
    structure_min_length=100,
    structure_type=PromptTransformType.FORMAT,
    structure_description="Added polite structured formatting",
    context_template="Background: {summary}\n\nCurrent request: {prompt}",
    cue_words=("analyze", "summarize"),
    cue_suffix=(
        "\n\nPlease organize your answer as:\n1. Key points\n"
        "2. Detailed analysis\n3. Conclusions and recommendations"
    ),
    cue_type=PromptTransformType.STRUCTURE,
    cue_description="Added analysis structure",
    max_length=100_000,
    truncation_suffix="...\n\nPlease answer based on the information above.",
    improvement_per_transform=0.18,
)

GROK_STYLE = PromptStyle(
    structure_template="You're having a friendly, casual conversation. {prompt}",
    structure_skip_markers=("casual", "friendly"),
    structure_type=PromptTransformType.FORMAT,
    structure_description="Added conversational tone",
    context_template="Recent context: {summary}\n\n{prompt}",
    cue_words=("recent", "current"),
    cue_negated=True,
    cue_suffix="\n\nFeel free to reference current events or recent developments if relevant.",
    cue_type=PromptTransformType.SPECIFICITY,
    cue_description="Encouraged use of real-time knowledge",
    max_length=15_000,
    improvement_per_transform=0.12,
)

DEFAULT_STYLE = PromptStyle(
    context_template="Previous conversation context: {summary}\n\nCurrent request: {prompt}",
    improvement_per_transform=0.1,
)
