"""
Scheduler Prompts

各节点的 System Prompt 定义，以及操作节点使用的 PromptModule。
"""

from collections.abc import Callable
from dataclasses import dataclass

from ..models import Canvas, HighlightSelection, InPlaceEditType, SelectedRange

# ==============================================
# Intent Matcher Prompt
# ==============================================
INTENT_MATCHER_PROMPT = """You are the intent matcher of a writing copilot that works on canvases (documents).

Decide which operation the user wants, choosing ONLY from the candidate types listed below.

## Operation Types

- **generate_new**: create a brand-new canvas/document from the request
- **rewrite_existing**: rewrite the whole current canvas (tone, length, structure)
- **edit_existing**: change a specific part of the current canvas
- **other**: answer a question or chat; no canvas operation

## Candidate Types

{candidates}

## Output Format

Return ONLY a JSON object (no markdown, no explanation):

```json
{{
  "intent_type": "one of the candidate types",
  "confidence": 0.8,
  "reasoning": "one short sentence"
}}
```
"""

# ==============================================
# Query Analysis Prompt
# ==============================================
QUERY_ANALYSIS_PROMPT = """You are a query analyst. Given the user's query, the recent chat history and the \
context items the user attached, you:

1. Rewrite the query into a clear, self-contained question in the user's language, resolving pronouns \
such as "this" or "it" from the chat history.
2. List the ids of the context items the query explicitly or implicitly refers to.
3. Optionally give up to 3 alternative search queries.

## Context Items

{context_items}

## Output Format

Return ONLY a JSON object (no markdown, no explanation):

```json
{{
  "optimized_query": "rewritten query",
  "mentioned_context_ids": ["canvas-1"],
  "rewritten_queries": [],
  "intent": "short description"
}}
```
"""

# ==============================================
# Tool Result Prompts
# ==============================================
TOOL_SUMMARY_PROMPT = """You will be provided with a result generated by a tool. Your task is to summarize \
the most essential information from these results. The summary should include all key points and be no \
more than {max_words} words.

Tool results are provided within triple quotes.
\"\"\"
{content}
\"\"\"

Summary requirements:
1. The summary must include all key points;
2. Important: The word limit is **{max_words} words**.

After completing the summary, please provide suggestions for the next decision-making steps.

Return ONLY a JSON object: {{"summary": "..."}}
"""

TOOL_SUCCESS_TEMPLATE = """The **{tool_name}** tool has already completed the task based on the given user query: **{query}**.
## Tool result
Tool result is provided within triple quotes.
\"\"\"
{tool_result}
\"\"\"
## Canvas
- The result is **already sent to the user**.
- Please evaluate whether the user's request has been fully satisfied. If further actions are needed, \
determine the next appropriate tool to call; otherwise, terminate the response."""

TOOL_FAILED_TEMPLATE = (
    "The **{tool_name}** tool call for the user query **{query}** returned no content, "
    "please check whether a new tool needs to be called or stop the response."
)

TOOL_ERROR_TEMPLATE = (
    "The **{tool_name}** tool call for the user query **{query}** failed with an error, "
    "please check whether a new tool needs to be called or stop the response."
)

# ==============================================
# Follow-up Prompt
# ==============================================
FOLLOW_UP_PROMPT = """## Role
You are an expert at identifying key information from a conversation and proposing {count} semantically \
relevant follow-up questions that help the user understand the content more deeply.

## Rules
- Questions should be **short, concise, and contextual**
- Only propose questions related to the conversation
- Output the questions in locale: {locale}

## Output Format

Return ONLY a JSON object (no markdown, no explanation):

```json
{{"recommend_ask_followup_question": ["question 1", "question 2", "question 3"]}}
```
"""

# ==============================================
# Operation Prompts
# ==============================================
COMMON_QNA_SYSTEM_PROMPT = """You are a helpful AI assistant. Answer the user's question accurately and \
concisely in markdown."""

COMMON_QNA_CONTEXT_RULES = """When context is provided inside <context> tags, ground your answer in it and \
cite sources as [n] in the order they appear. If the context does not contain the answer, say so and \
answer from general knowledge."""

GENERATE_CANVAS_SYSTEM_PROMPT = """You are an expert writer. Create a complete, well-structured markdown \
document that fulfils the user's request. Start with a level-1 title. Output only the document."""

REWRITE_CANVAS_SYSTEM_PROMPT = """You are an expert editor. Rewrite the whole current canvas according to \
the user's instruction. Keep facts intact unless asked otherwise. Output only the rewritten document."""

EDIT_CANVAS_BLOCK_SYSTEM_PROMPT = """You are an expert editor. Edit ONLY the highlighted block of the \
current canvas according to the user's instruction. Output only the replacement block in markdown; \
keep it consistent with the surrounding text."""

EDIT_CANVAS_INLINE_SYSTEM_PROMPT = """You are an expert editor. Edit ONLY the highlighted inline text of \
the current canvas according to the user's instruction. Output only the replacement text, without \
markdown block syntax."""

LOCALE_RULE = "Always respond in locale: {locale}."

# ==============================================
# Capability Prompts
# ==============================================
SUMMARY_SKILL_PROMPT = """Summarize the user's input into a short list of key points in markdown."""

TRANSLATE_SKILL_PROMPT = """Translate the user's input into {target_locale}. Output only the translation."""


# ==============================================
# Prompt Modules
# ==============================================
@dataclass(frozen=True)
class PromptModule:
    """
    一个操作节点的提示词构建器

    build_system_prompt(locale, need_prepare_context)
    build_context_user_prompt(context)
    build_user_prompt(original_query, optimized_query, rewritten_queries, locale)

    embedded 是放在用户提示词前面的画布，计入预算且不会再出现在上下文中。
    """

    name: str
    build_system_prompt: Callable[[str, bool], str]
    build_context_user_prompt: Callable[[str], str]
    build_user_prompt: Callable[[str, str, list[str], str], str]
    embedded: "EmbeddedCanvas | None" = None


def _context_block(context: str) -> str:
    return f"<context>\n{context}\n</context>"


def _query_block(original_query: str, optimized_query: str, rewritten_queries: list[str]) -> str:
    lines = [f"User query: {original_query}"]
    if optimized_query and optimized_query != original_query:
        lines.append(f"Rewritten query: {optimized_query}")
    if rewritten_queries:
        lines.append("Related queries: " + "; ".join(rewritten_queries))
    return "\n".join(lines)


def _system(base: str, locale: str, extra: str = "") -> str:
    parts = [base]
    if extra:
        parts.append(extra)
    parts.append(LOCALE_RULE.format(locale=locale))
    return "\n\n".join(parts)


def common_qna_module() -> PromptModule:
    return PromptModule(
        name="common_qna",
        build_system_prompt=lambda locale, with_context: _system(
            COMMON_QNA_SYSTEM_PROMPT, locale, COMMON_QNA_CONTEXT_RULES if with_context else ""
        ),
        build_context_user_prompt=_context_block,
        build_user_prompt=lambda original, optimized, rewritten, locale: _query_block(
            original, optimized, rewritten
        ),
    )


def generate_canvas_module() -> PromptModule:
    return PromptModule(
        name="generate_canvas",
        build_system_prompt=lambda locale, with_context: _system(
            GENERATE_CANVAS_SYSTEM_PROMPT, locale, COMMON_QNA_CONTEXT_RULES if with_context else ""
        ),
        build_context_user_prompt=_context_block,
        build_user_prompt=lambda original, optimized, rewritten, locale: _query_block(
            original, optimized, rewritten
        ),
    )


@dataclass(frozen=True)
class EmbeddedCanvas:
    """
    Canvas text carried inside the user prompt.

    highlight 为 None 时 before 是整篇内容；否则 before/after 是高亮两侧的文本。
    """

    canvas: Canvas
    before: str
    highlight: str | None = None
    after: str = ""

    def render(self, before: str | None = None, after: str | None = None) -> str:
        before = self.before if before is None else before
        after = self.after if after is None else after
        body = before if self.highlight is None else f"{before}<highlight>{self.highlight}</highlight>{after}"
        return (
            f'<current_canvas id="{self.canvas.canvas_id}" title="{self.canvas.title}">\n'
            f"{body}\n"
            "</current_canvas>"
        )


def rewrite_canvas_module(canvas: Canvas) -> PromptModule:
    """The full current canvas is always part of the user prompt."""
    return PromptModule(
        name="rewrite_canvas",
        build_system_prompt=lambda locale, with_context: _system(REWRITE_CANVAS_SYSTEM_PROMPT, locale),
        build_context_user_prompt=_context_block,
        build_user_prompt=lambda original, optimized, rewritten, locale: _query_block(original, optimized, rewritten),
        embedded=EmbeddedCanvas(canvas=canvas, before=canvas.content),
    )


def _embedded_selection(
    canvas: Canvas,
    selection: HighlightSelection | None,
    selected_range: SelectedRange | None,
) -> EmbeddedCanvas:
    if selection is not None:
        return EmbeddedCanvas(
            canvas=canvas,
            before=selection.text_before,
            highlight=selection.selected_text,
            after=selection.text_after,
        )
    if selected_range is not None:
        content = canvas.content
        return EmbeddedCanvas(
            canvas=canvas,
            before=content[:selected_range.start_index],
            highlight=selected_range.selected_text or content[selected_range.start_index:selected_range.end_index],
            after=content[selected_range.end_index:],
        )
    return EmbeddedCanvas(canvas=canvas, before=canvas.content)


def edit_canvas_module(
    edit_type: InPlaceEditType | None,
    canvas: Canvas,
    selection: HighlightSelection | None = None,
    selected_range: SelectedRange | None = None,
) -> PromptModule:
    base = (
        EDIT_CANVAS_INLINE_SYSTEM_PROMPT
        if edit_type == InPlaceEditType.INLINE
        else EDIT_CANVAS_BLOCK_SYSTEM_PROMPT
    )
    return PromptModule(
        name=f"edit_canvas_{(edit_type or InPlaceEditType.BLOCK).value}",
        build_system_prompt=lambda locale, with_context: _system(base, locale),
        build_context_user_prompt=_context_block,
        build_user_prompt=lambda original, optimized, rewritten, locale: _query_block(original, optimized, rewritten),
        embedded=_embedded_selection(canvas, selection, selected_range),
    )
