"""Prompt enhancer: rewrites a prompt at a chosen intensity."""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .base_tool import BaseCopilotTool, ProgressCallback, PromptContext

logger = logging.getLogger(__name__)

ENHANCEMENT_LEVELS = ("light", "medium", "aggressive")

BASE_PROMPT = """You are a prompt enhancement assistant. Your task is to improve user prompts for better AI interactions.

CRITICAL: You MUST respond ONLY with valid JSON. No markdown, no explanations, no code blocks - just raw JSON.

General Guidelines:
- Preserve the user's original intent
- Add relevant context where missing
- Clarify ambiguous language
- Structure information logically
- Keep improvements proportional to the enhancement level
- Make prompts more specific and actionable

Required JSON format (respond with ONLY this structure, nothing else):
{"enhanced": "the improved prompt text", "improvements": ["improvement 1", "improvement 2"]}

List 2-4 specific improvements you made in the "improvements" array."""

LEVEL_GUIDANCE = {
    "light": """Enhancement Level: LIGHT
- Make minimal changes
- Fix obvious clarity issues
- Add only critical missing information
- Keep the prompt's style and length similar
- Focus on quick wins without major restructuring""",
    "medium": """Enhancement Level: MEDIUM
- Make moderate improvements
- Add helpful context where beneficial
- Improve structure and organization
- Clarify ambiguous terms
- Add relevant technical details
- Balance between preserving style and improving effectiveness""",
    "aggressive": """Enhancement Level: AGGRESSIVE
- Make comprehensive improvements
- Add substantial context and background
- Fully restructure for optimal clarity
- Add all relevant technical specifications
- Break down complex requests into clear steps
- Include examples or expected formats
- Transform vague requests into detailed instructions""",
}


@dataclass
class EnhancementRequest:
    prompt: str
    level: str = "medium"


@dataclass
class EnhancedPrompt:
    original: str
    enhanced: str
    improvements: list[str] = field(default_factory=list)
    level: str = "medium"
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class PromptEnhancer(BaseCopilotTool[EnhancementRequest, EnhancedPrompt]):
    tool_name = "PromptEnhancer"

    async def enhance_prompt(
        self,
        prompt: str,
        level: str = "medium",
        on_progress: ProgressCallback | None = None,
        context: PromptContext | None = None,
    ) -> EnhancedPrompt:
        """Return the rewrite, or the original text with the failure reason."""
        if level not in ENHANCEMENT_LEVELS:
            level = "medium"
        try:
            if not prompt or not prompt.strip():
                raise ValueError("Prompt cannot be empty")
            result = await self.execute(EnhancementRequest(prompt, level), on_progress, context)
        except Exception as e:
            logger.error("Enhancement failed: %s", e)
            return EnhancedPrompt(
                original=prompt,
                enhanced=prompt,
                improvements=[f"Enhancement unavailable: {e}"],
                level=level,
                error=str(e),
            )
        result.original = prompt
        result.level = level
        return result

    def validate_input(self, data: EnhancementRequest) -> None:
        if not data.prompt.strip():
            raise ValueError(f"{self.tool_name}: Input cannot be empty")

    def build_prompt(self, data: EnhancementRequest, context: PromptContext | None = None) -> str:
        parts = _context_parts(context) if context else []
        context_section = ""
        if parts:
            context_section = "\n\nCONTEXT (use to make enhancement more relevant):\n" + "\n\n".join(parts)
        return (
            f"{BASE_PROMPT}\n\n{LEVEL_GUIDANCE[data.level]}{context_section}\n\n"
            f"Improve the following user prompt according to the {data.level} enhancement level:\n\n"
            f'Original Prompt:\n"{data.prompt}"\n\n'
            'RESPOND WITH JSON ONLY: {"enhanced": "...", "improvements": ["...", "..."]}'
        )

    def parse_response(self, content: str) -> EnhancedPrompt:
        parsed = self.parse_json(content)
        if not isinstance(parsed, dict):
            raise ValueError("Expected a JSON object")
        enhanced = parsed.get("enhanced")
        if not enhanced or not isinstance(enhanced, str):
            raise ValueError('Missing or invalid "enhanced" field')
        improvements = parsed.get("improvements")
        if not isinstance(improvements, list):
            raise ValueError('Missing or invalid "improvements" field')
        improvements = [i for i in improvements if isinstance(i, str) and i]
        return EnhancedPrompt(
            original="",
            enhanced=enhanced.strip(),
            improvements=improvements or ["Prompt enhanced for better clarity and specificity"],
        )


def should_enhance(prompt: str) -> bool:
    """Return True when a prompt shows two or more signs of needing more detail."""
    text = prompt.strip()
    if len(text) < 20:
        return True
    if len(text) > 500:
        return False
    indicators = [
        re.search(r"\b(something|stuff|thing|whatever|somehow)\b", text, re.I) is not None,
        re.search(r"\b(help|assist|do|make|fix)\b", text, re.I) is not None and len(text) < 50,
        re.search(r"[.!?]", text) is None,
        len(text.split()) < 3,
        re.search(r"\b(file|project|function|class|component|feature|error|bug|in|at|for|with)\b", text, re.I) is None,
    ]
    return sum(indicators) >= 2


def get_enhancement_suggestions(prompt: str) -> list[str]:
    text = prompt.strip()
    suggestions = []
    if len(text) < 20:
        suggestions.append("Add more details about what you want to achieve")
    if "?" not in text and not re.search(r"\b(create|add|implement|fix|update|refactor|write|generate)\b", text, re.I):
        suggestions.append("Make your request more specific - what action should be taken?")
    if not re.search(r"\b(file|function|class|component|module|feature)\b", text, re.I):
        suggestions.append("Specify which files, functions, or components are involved")
    if not re.search(r"\b(because|since|for|to|so that)\b", text, re.I):
        suggestions.append("Explain why you need this - it helps provide better context")
    if len(text.split()) < 5:
        suggestions.append("Expand your prompt with more context and requirements")
    return suggestions or ["Your prompt looks good! No major enhancements needed."]


def _context_parts(context: PromptContext) -> list[str]:
    parts = []
    if context.goal:
        parts.append(f"USER'S SESSION GOAL: {context.goal}")
    if context.project_summary:
        parts.append(f"PROJECT: {context.project_summary}")
    if context.tech_stack:
        parts.append(f"TECH STACK: {', '.join(context.tech_stack)}")
    if context.recent_topics:
        parts.append(f"TOPICS ALREADY DISCUSSED: {', '.join(context.recent_topics[:5])}")
    if context.code_snippets:
        code = "\n\n".join(f"// {s.file_path}\n{s.relevant_code[:400]}" for s in context.code_snippets[:2])
        parts.append(f"RELEVANT CODE:\n{code}")
    first = [i for i in context.first_interactions if i.prompt]
    if first:
        lines = "\n".join(
            f'{n}. User: "{i.prompt[:200]}"\n   AI: {(i.response or "N/A")[:200]}'
            for n, i in enumerate(first, 1)
        )
        parts.append(f"SESSION START (first {len(first)} exchanges):\n{lines}")
    last = [i for i in context.last_interactions if i.prompt]
    if last:
        lines = "\n".join(
            f'{n}. User: "{i.prompt[:200]}"\n   AI: {(i.response or "N/A")[:200]}\n'
            f"   Files: {', '.join(i.files_modified) or 'none'}"
            for n, i in enumerate(last, 1)
        )
        parts.append(f"RECENT EXCHANGES (last {len(last)}):\n{lines}")
    return parts
