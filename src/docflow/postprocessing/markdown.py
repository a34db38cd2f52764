"""Markdown clean-up for text where headers, labels and sentences run together."""

import re

from docflow.postprocessing.base import PostProcessor, PostProcessResult, mask_code

# Capitalized words that start a new sentence. "## ConsiderationsThe text" is
# split, "## JavaScript runtime" is not.
SENTENCE_STARTERS = frozenset(
    """
    the a an this that these those some any all each every no
    it its we you they i my your our their
    is are was were be has have had do does did will would should could can may must
    use run check try make see note ensure verify confirm add remove create delete
    update set get start stop open close install configure enable disable
    for from to in on at by with about into during after before
    if when while unless although though once since because but and or so yet
    however therefore thus also additionally furthermore otherwise then next
    first second third finally now here there just only even still always never often
    cause solution warning important example error issue problem fix resolution
    answer question tip info details summary overview background context result
    output input step steps action description reason explanation requirements
    """.split()
)

# Narrower list for "word.Word" boundaries where a false positive is costlier
BOUNDARY_STARTERS = frozenset(
    """
    the this that if when while for to in on at as we you it they there however
    therefore also but or and please note ensure see refer check use after before
    """.split()
)

LABELS = r"(?:Cause|Solution|Note|Warning|Important|Example)"
SECTION_TITLES = (
    r"(?:Troubleshooting|Overview|Prerequisites|Installation|Configuration|Usage|"
    r"Examples?|Summary|Conclusion|Introduction|Background|Requirements|Setup|"
    r"Notes?|Tips?|Warnings?|Solutions?|Steps|Instructions)"
)

_HEADER_LINE = re.compile(r"^#{1,6}\s")
_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z][a-z]+)")
_BOLD_RUN_ON = re.compile(r"(\*{2,3}[^\s*\d][^*\n]*?\*{2,3})([A-Z][a-z]+)")
_BOLD_COLON_RUN_ON = re.compile(r"(\*{2,3}[^\s*\d][^*\n]*?:\*{2,3})([A-Z])")
_TITLE_RUN_ON = re.compile(rf"\b({SECTION_TITLES})([A-Z][a-z]+)")
_LEADING_LABEL = re.compile(rf"^({LABELS}):[ \t]+(?!`|__)(\S)")
_LEADING_LABEL_NO_SPACE = re.compile(rf"^({LABELS}):([A-Z])", re.M)
_LABEL_AFTER_SENTENCE = re.compile(
    rf"([.!?:])[ \t]*({LABELS}(?:\s*\d+)?):[ \t]*(?!`|__)(\S)"
)
_MISSING_SPACE = re.compile(r"([a-z])\.([A-Z][a-z]+)\b")
_LINK_RUN_ON = re.compile(r"(\]\([^)]+\))(?=[A-Za-z0-9])")
_SPACED_BOLD = re.compile(r"(^|[\s(])(\*{2,3})[ \t]+(\S)", re.M)
_TRAILING_RULE = re.compile(r"\n*={4,}\n*$")


def _split_if_starter(starters: frozenset, sep: str):
    def replace(match: re.Match) -> str:
        if match.group(2).lower() in starters:
            return f"{match.group(1)}{sep}{match.group(2)}"
        return match.group(0)

    return replace


def split_run_on_headers(text: str) -> str:
    lines = []
    for line in text.split("\n"):
        if _HEADER_LINE.match(line):
            line = _CAMEL_BOUNDARY.sub(_split_if_starter(SENTENCE_STARTERS, "\n\n"), line)
        lines.append(line)
    return "\n".join(lines)


class MarkdownFormatter(PostProcessor):
    name = "markdown-formatting"

    def process(self, text: str) -> PostProcessResult:
        masked = mask_code(text)
        result = masked.text

        result = _SPACED_BOLD.sub(r"\1\2\3", result)
        result = split_run_on_headers(result)
        result = _BOLD_RUN_ON.sub(_split_if_starter(SENTENCE_STARTERS, "\n\n"), result)
        result = _BOLD_COLON_RUN_ON.sub(r"\1\n\n\2", result)
        result = _TITLE_RUN_ON.sub(_split_if_starter(SENTENCE_STARTERS, "\n\n"), result)

        result = _LEADING_LABEL.sub(r"\1:\n\n\2", result)
        result = _LEADING_LABEL_NO_SPACE.sub(r"\1:\n\n\2", result)
        result = _LABEL_AFTER_SENTENCE.sub(r"\1\n\n\2:\n\n\3", result)

        result = _MISSING_SPACE.sub(_split_if_starter(BOUNDARY_STARTERS, ". "), result)
        result = _LINK_RUN_ON.sub(r"\1 ", result)
        result = re.sub(r"([a-z])\.(\*{2,3}[A-Z])", r"\1. \2", result)
        result = result.replace('""', '"')

        masked.text = result
        result = masked.restore()

        result = _TRAILING_RULE.sub("", result)
        result = "\n".join(line.rstrip() for line in result.split("\n"))
        result = re.sub(r"\n{3,}", "\n\n", result)
        return PostProcessResult(text=result)
