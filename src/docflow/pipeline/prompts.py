"""
LLM prompt templates for the pipeline stages.

Templates use ``{{variable}}`` placeholders so JSON examples need no brace
escaping. Defaults live in this module; a prompts directory may override any
template with a ``<prompt_id>.md`` file containing ``# System Prompt`` and
``# User Prompt`` sections (YAML frontmatter is ignored).
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

VARIABLE = re.compile(r"\{\{(\w+)\}\}")
FRONTMATTER = re.compile(r"^---\n[\s\S]*?\n---\n")


@dataclass(frozen=True)
class PromptTemplate:
    id: str
    system: str
    user: str


@dataclass(frozen=True)
class RenderedPrompt:
    system: str
    user: str


CLASSIFICATION_SYSTEM_PROMPT = """You are a documentation analyst for {{project_name}} ({{domain}}).

Your task is to read a batch of community messages, group related messages into
conversation threads, and decide which threads contain knowledge worth adding to
the documentation.

Categories:
{{categories}}

Rules:
1. Every thread lists the indices of the messages it contains.
2. A message belongs to at most one thread.
3. Greetings, small talk and off-topic chatter go into a "no-doc-value" thread.
4. Context messages are shown for understanding only. Never include their indices.
5. For threads with documentation value, give search keywords and a semantic
   query that would find the relevant documentation pages."""

CLASSIFICATION_USER_PROMPT = """Recent context (do not classify):
{{context_text}}

Messages to analyze:
{{messages_to_analyze}}

Return ONLY valid JSON in this format:
{
  "threads": [
    {
      "category": "troubleshooting",
      "messages": [0, 1],
      "summary": "One-sentence summary of the thread",
      "docValueReason": "Why this thread matters for the documentation",
      "ragSearchCriteria": {
        "keywords": ["keyword", "another"],
        "semanticQuery": "natural language search query"
      }
    }
  ]
}"""

GENERATION_SYSTEM_PROMPT = """You are a technical writer maintaining the {{project_name}} documentation.

Domain: {{domain}}
Audience: {{target_audience}}
Purpose: {{documentation_purpose}}

Given a community conversation and the most relevant existing documentation
pages, propose concrete documentation changes. Only propose a change when the
conversation reveals information the documentation is missing, wrong about, or
explains poorly. Prefer updating an existing page over creating a new one.

Update types:
- INSERT: add new content to a page or section
- UPDATE: replace existing content
- DELETE: remove outdated content
- NONE: the documentation already covers this

Propose at most {{max_proposals}} changes. Never include credentials, private
keys or tokens in suggested text.

{{tenant_guidelines}}"""

GENERATION_USER_PROMPT = """Conversation ({{category}}): {{thread_summary}}

Messages:
{{messages}}

Relevant documentation:
{{rag_docs}}

Return ONLY valid JSON in this format:
{
  "proposals": [
    {
      "updateType": "UPDATE",
      "page": "docs/path/to/page.md",
      "section": "Section heading",
      "suggestedText": "The full markdown text to add or replace",
      "reasoning": "Why this change is needed",
      "sourceMessages": [0, 1]
    }
  ],
  "proposalsRejected": false,
  "rejectionReason": null
}

If no change is warranted, return an empty proposals array, set
"proposalsRejected" to true and explain why in "rejectionReason"."""

CONDENSE_SYSTEM_PROMPT = """You are an editor who shortens documentation text without losing facts.

Keep every command, code block, configuration value and warning. Remove
repetition, filler and conversational tone. Keep the markdown structure."""

CONDENSE_USER_PROMPT = """The following text for {{page}} is {{current_length}} characters.
Condense it to about {{target_length}} characters and never more than {{max_length}}.

Text:
{{content}}

Return ONLY valid JSON in this format:
{
  "condensedContent": "the shortened markdown text"
}"""

DEFAULT_TEMPLATES = {
    "thread-classification": PromptTemplate(
        "thread-classification", CLASSIFICATION_SYSTEM_PROMPT, CLASSIFICATION_USER_PROMPT
    ),
    "changeset-generation": PromptTemplate(
        "changeset-generation", GENERATION_SYSTEM_PROMPT, GENERATION_USER_PROMPT
    ),
    "content-condense": PromptTemplate(
        "content-condense", CONDENSE_SYSTEM_PROMPT, CONDENSE_USER_PROMPT
    ),
}


def render_template(template: str, variables: dict[str, Any]) -> str:
    """Substitute ``{{name}}`` placeholders; unknown names are left in place."""

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            logger.warning(f"Prompt variable {{{{{name}}}}} not provided")
            return match.group(0)
        return str(variables[name])

    return VARIABLE.sub(replace, template)


def parse_prompt_file(prompt_id: str, content: str) -> PromptTemplate:
    body = FRONTMATTER.sub("", content, count=1)
    system = re.search(r"#\s*System Prompt\s*\n([\s\S]*?)(?=#\s*User Prompt|\Z)", body, re.I)
    user = re.search(r"#\s*User Prompt\s*\n([\s\S]*)\Z", body, re.I)
    if not system and not user:
        return PromptTemplate(prompt_id, "", body.strip())
    return PromptTemplate(
        prompt_id,
        system.group(1).strip() if system else "",
        user.group(1).strip() if user else "",
    )


class PromptRegistry:
    """Prompt templates by id, defaults overridden from an optional directory."""

    def __init__(self, prompts_dir: Optional[str | Path] = None):
        self._templates = dict(DEFAULT_TEMPLATES)
        if prompts_dir:
            self.load_directory(Path(prompts_dir))

    def load_directory(self, directory: Path) -> int:
        if not directory.is_dir():
            logger.warning(f"Prompts directory not found: {directory}")
            return 0
        count = 0
        for path in sorted(directory.glob("*.md")):
            self._templates[path.stem] = parse_prompt_file(
                path.stem, path.read_text(encoding="utf-8")
            )
            count += 1
        logger.info(f"Loaded {count} prompt overrides from {directory}")
        return count

    def get(self, prompt_id: str) -> PromptTemplate:
        try:
            return self._templates[prompt_id]
        except KeyError:
            raise KeyError(f"Unknown prompt template: {prompt_id}") from None

    def render(self, prompt_id: str, variables: dict[str, Any]) -> RenderedPrompt:
        template = self.get(prompt_id)
        return RenderedPrompt(
            system=render_template(template.system, variables),
            user=render_template(template.user, variables),
        )

    def ids(self) -> list[str]:
        return sorted(self._templates)
