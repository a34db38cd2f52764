"""HTML to markdown conversion for generated proposal text."""

import re

from docflow.postprocessing.base import PostProcessor, PostProcessResult, mask_code


def _tag(name: str) -> str:
    """Opening tag pattern that does not match longer tag names (``<b>`` vs ``<br>``)."""
    return rf"<{name}(?:\s[^>]*)?>"


INLINE_RULES = [
    (re.compile(_tag("strong") + r"([\s\S]*?)</strong>", re.I), r"**\1**"),
    (re.compile(_tag("b") + r"([\s\S]*?)</b>", re.I), r"**\1**"),
    (re.compile(_tag("em") + r"([\s\S]*?)</em>", re.I), r"*\1*"),
    (re.compile(_tag("i") + r"([\s\S]*?)</i>", re.I), r"*\1*"),
    (re.compile(_tag("code") + r"([\s\S]*?)</code>", re.I), r"`\1`"),
    (re.compile(r"<a\s+[^>]*href=[\"']([^\"']+)[\"'][^>]*>([\s\S]*?)</a>", re.I), r"[\2](\1)"),
    (re.compile(_tag("del") + r"([\s\S]*?)</del>", re.I), r"~~\1~~"),
    (re.compile(_tag("s") + r"([\s\S]*?)</s>", re.I), r"~~\1~~"),
    (re.compile(_tag("span") + r"([\s\S]*?)</span>", re.I), r"\1"),
]

BLOCK_RULES = [
    *[
        (re.compile(_tag(f"h{level}") + rf"([\s\S]*?)</h{level}>", re.I), "\n" + "#" * level + r" \1" + "\n")
        for level in range(1, 7)
    ],
    (re.compile(_tag("p") + r"([\s\S]*?)</p>", re.I), r"\n\1\n"),
    (re.compile(r"<hr\s*/?>", re.I), "\n---\n"),
    (re.compile(_tag("ul") + r"([\s\S]*?)</ul>", re.I), r"\n\1\n"),
    (re.compile(_tag("ol") + r"([\s\S]*?)</ol>", re.I), r"\n\1\n"),
    (re.compile(_tag("li") + r"([\s\S]*?)</li>", re.I), r"- \1\n"),
    (re.compile(r"<div>([\s\S]*?)</div>", re.I), r"\n\1\n"),
]

ADMONITION_CLASSES = {
    "info": "info",
    "note": "note",
    "tip": "tip",
    "warning": "warning",
    "caution": "caution",
    "danger": "danger",
    "important": "warning",
    "success": "tip",
}

COMPLEX_HTML = [
    (re.compile(r"<table[\s\S]*?</table>", re.I), "Contains HTML table - manual conversion to markdown table may be needed"),
    (re.compile(r"<svg[\s\S]*?</svg>", re.I), "Contains SVG element - needs manual review"),
    (re.compile(r"<iframe[\s\S]*?</iframe>", re.I), "Contains iframe - needs manual review"),
    (re.compile(r"<script[\s\S]*?</script>", re.I), "Contains script tag - should be removed or converted"),
    (re.compile(r"<style[\s\S]*?</style>", re.I), "Contains style tag - should be removed"),
    (re.compile(r"style=[\"'][^\"']+[\"']", re.I), "Contains inline styles - may need cleanup"),
    (re.compile(r"<div\s[^>]*>", re.I), "Contains div with attributes - needs manual review"),
    (re.compile(r"<form[\s\S]*?</form>", re.I), "Contains form element - needs manual review"),
    (re.compile(r"<(?:sub|sup)(?:\s[^>]*)?>", re.I), "Contains subscript or superscript - no markdown equivalent"),
]

HTML_TAG = re.compile(r"</?[a-z][a-z0-9]*(?:\s[^>]*)?/?>", re.I)
_BLOCKQUOTE_CLASS = re.compile(
    r"<blockquote\s+[^>]*class=[\"']([^\"']+)[\"'][^>]*>([\s\S]*?)</blockquote>", re.I
)
_BLOCKQUOTE = re.compile(_tag("blockquote") + r"([\s\S]*?)</blockquote>", re.I)
_PRE_CODE = re.compile(_tag("pre") + r"\s*" + _tag("code") + r"([\s\S]*?)</code>\s*</pre>", re.I)
_PRE = re.compile(_tag("pre") + r"([\s\S]*?)</pre>", re.I)
_BR = re.compile(r"<br\s*/?>", re.I)
_MAX_INLINE_PASSES = 5


def contains_html(text: str) -> bool:
    return bool(HTML_TAG.search(text))


def detect_complex_html(text: str) -> list[str]:
    warnings = [message for pattern, message in COMPLEX_HTML if pattern.search(text)]
    remaining = sorted({re.sub(r"</?|[\s/>].*", "", tag).lower() for tag in HTML_TAG.findall(text)})
    if remaining:
        warnings.append(f"Contains unconverted HTML elements: {', '.join(remaining)}")
    return warnings


def _admonition(match: re.Match) -> str:
    kind = "note"
    for cls in match.group(1).lower().split():
        if cls in ADMONITION_CLASSES:
            kind = ADMONITION_CLASSES[cls]
            break
    return f"\n:::{kind}\n{match.group(2).strip()}\n:::\n"


def _quote(match: re.Match) -> str:
    lines = match.group(1).strip().split("\n")
    return "\n" + "\n".join(f"> {line}" for line in lines) + "\n"


def _has_complex(text: str) -> bool:
    return any(pattern.search(text) for pattern, _ in COMPLEX_HTML)


def convert_html(text: str) -> str:
    """Convert simple HTML markup to markdown. Complex structures are left as is."""
    result = _BLOCKQUOTE_CLASS.sub(_admonition, text)
    result = _PRE_CODE.sub(r"\n```\n\1\n```\n", result)
    result = _PRE.sub(r"\n```\n\1\n```\n", result)

    # Inline tags nest, so apply until nothing changes
    for _ in range(_MAX_INLINE_PASSES):
        previous = result
        for pattern, replacement in INLINE_RULES:
            result = pattern.sub(replacement, result)
        if result == previous:
            break

    result = _BR.sub("\n", result)
    for pattern, replacement in BLOCK_RULES:
        result = pattern.sub(replacement, result)
    result = _BLOCKQUOTE.sub(_quote, result)

    result = re.sub(r"\n{3,}", "\n\n", result)
    return result.strip()


class HtmlToMarkdown(PostProcessor):
    name = "html-to-markdown"

    def process(self, text: str) -> PostProcessResult:
        masked = mask_code(text)
        if not contains_html(masked.text):
            return PostProcessResult(text=text)

        # Tables and other complex markup are reported, never rewritten
        if _has_complex(masked.text):
            return PostProcessResult(text=text, warnings=detect_complex_html(masked.text))

        masked.text = convert_html(masked.text)
        return PostProcessResult(text=masked.restore(), warnings=detect_complex_html(masked.text))
