"""Post-processor interface and code masking helpers."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

_FENCED_BLOCK = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`[^`\n]+`")


@dataclass
class PostProcessResult:
    text: str
    warnings: list[str] = field(default_factory=list)


class PostProcessor(ABC):
    """One text clean-up pass over a proposal's suggested text."""

    name: str = "base"

    @abstractmethod
    def process(self, text: str) -> PostProcessResult:
        ...


@dataclass
class MaskedText:
    """Text with code segments swapped for placeholders."""

    text: str
    masks: dict[str, str] = field(default_factory=dict)

    def restore(self) -> str:
        result = self.text
        for placeholder, original in self.masks.items():
            result = result.replace(placeholder, original, 1)
        return result


def mask_code(text: str) -> MaskedText:
    """Replace fenced and inline code with ``__CODE_BLOCK_n__`` / ``__INLINE_CODE_n__``."""
    masked = MaskedText(text=text)
    counter = 0

    def _mask(prefix: str):
        def replace(match: re.Match) -> str:
            nonlocal counter
            placeholder = f"__{prefix}_{counter}__"
            counter += 1
            masked.masks[placeholder] = match.group(0)
            return placeholder

        return replace

    masked.text = _FENCED_BLOCK.sub(_mask("CODE_BLOCK"), masked.text)
    masked.text = _INLINE_CODE.sub(_mask("INLINE_CODE"), masked.text)
    return masked
