"""Deterministic clean-up of generated documentation text."""

from docflow.postprocessing.pipeline import is_markdown_target, post_process, reformat

__all__ = ["is_markdown_target", "post_process", "reformat"]
