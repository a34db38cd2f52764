"""
Post-processing pipeline for generated proposal text.

Processors run in a fixed order (code blocks, HTML, markdown, lists) and the
chain is repeated until the text stops changing, so
``reformat(reformat(x)) == reformat(x)``.
"""

import logging
from pathlib import PurePosixPath
from typing import Optional

from docflow.models.db import UpdateType
from docflow.postprocessing.base import PostProcessor
from docflow.postprocessing.code_blocks import CodeBlockFormatter
from docflow.postprocessing.html_to_markdown import HtmlToMarkdown
from docflow.postprocessing.lists import ListFormatter
from docflow.postprocessing.markdown import MarkdownFormatter

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = {"", ".md", ".mdx", ".markdown"}
MAX_PASSES = 5

DEFAULT_PROCESSORS: list[PostProcessor] = [
    CodeBlockFormatter(),
    HtmlToMarkdown(),
    MarkdownFormatter(),
    ListFormatter(),
]


def is_markdown_target(page: Optional[str]) -> bool:
    if not page:
        return True
    return PurePosixPath(page).suffix.lower() in MARKDOWN_EXTENSIONS


def reformat(
    text: str, processors: Optional[list[PostProcessor]] = None
) -> tuple[str, list[str]]:
    """Run the processor chain to a fixed point.

    Returns:
        Tuple of (text, warnings). Warnings are de-duplicated in first-seen order.
    """
    processors = processors if processors is not None else DEFAULT_PROCESSORS
    warnings: list[str] = []

    for _ in range(MAX_PASSES):
        previous = text
        for processor in processors:
            result = processor.process(text)
            text = result.text
            for warning in result.warnings:
                if warning not in warnings:
                    warnings.append(warning)
        if text == previous:
            break
    else:
        logger.warning(f"Post-processing did not settle after {MAX_PASSES} passes")

    return text, warnings


def post_process(
    text: Optional[str], page: Optional[str], update_type: UpdateType | str
) -> tuple[Optional[str], list[str]]:
    """Reformat a proposal's suggested text when its target is a markdown page.

    DELETE and NONE proposals and empty text pass through untouched.
    """
    if not text or UpdateType(update_type) in (UpdateType.DELETE, UpdateType.NONE):
        return text, []
    if not is_markdown_target(page):
        return text, []
    return reformat(text)
