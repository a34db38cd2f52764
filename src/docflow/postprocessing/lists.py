"""Split numbered and bulleted list items that run together on one line."""

import re

from docflow.postprocessing.base import PostProcessor, PostProcessResult, mask_code

# (pattern, replacement) pairs applied in order to code-masked text
LIST_RULES = [
    # "migration)2. Finding" / "directory.2. Check"
    (re.compile(r"(?<!\d)([).!?])(\d+\.\s*\*{0,2}\s*[A-Z])"), r"\1\n\n\2"),
    # "Sync5. Download"
    (re.compile(r"([a-z])(\d+\.\s+[A-Z])"), r"\1\n\n\2"),
    # "Phase)- During" / "nodes.- Data" / "options:- First" / "properly- Missing"
    (re.compile(r"([).!?:a-z])(-\s+[A-Z])"), r"\1\n\n\2"),
    # "Solution:1."
    (re.compile(r"(:)(\d+\.\s)"), r"\1\n\n\2"),
    # "**Title:**1. Item" / "**Title**:1. Item"
    (re.compile(r"(\*{2,3}[^*\n]+:\*{2,3}|\*{2,3}[^*\n]+\*{2,3}:)(\d+\.)"), r"\1\n\n\2"),
    # "contribute:* Network"
    (re.compile(r"(:)(\*\s+[A-Z])"), r"\1\n\n\2"),
    # "execution. * Check"
    (re.compile(r"([.!?])[ \t]+(\*\s+\*{0,2}[A-Z])"), r"\1\n\n\2"),
]

_ESCAPED_NEWLINE = re.compile(r"\\n")
_BULLET_AFTER_CODE = re.compile(r"([`'\"])\*\s+")


class ListFormatter(PostProcessor):
    name = "list-formatting"

    def process(self, text: str) -> PostProcessResult:
        # Needs the backticks, so runs before masking
        result = _BULLET_AFTER_CODE.sub(r"\1\n\n* ", text)

        masked = mask_code(result)
        masked.text = _ESCAPED_NEWLINE.sub("\n", masked.text)
        for pattern, replacement in LIST_RULES:
            masked.text = pattern.sub(replacement, masked.text)
        result = masked.restore()

        result = re.sub(r"\n{3,}", "\n\n", result)
        return PostProcessResult(text=result)
