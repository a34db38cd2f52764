"""Fixes inside fenced code blocks: run-together shell commands and one-line JSON."""

import json
import re

from docflow.postprocessing.base import PostProcessor, PostProcessResult

CLI_COMMANDS = [
    "curl",
    "echo",
    "cat",
    "grep",
    "cd",
    "ls",
    "mkdir",
    "rm",
    "cp",
    "mv",
    "chmod",
    "chown",
    "sudo",
    "npm",
    "yarn",
    "pnpm",
    "node",
    "python",
    "pip",
    "docker",
    "git",
    "ssh",
    "wget",
    "tar",
    "systemctl",
    "journalctl",
    "export",
    "source",
]

# Words after which a command name is an argument, not a new command
PASSTHROUGH = set(CLI_COMMANDS) | {
    "run",
    "exec",
    "xargs",
    "time",
    "nohup",
    "env",
    "watch",
    "npx",
    "which",
    "man",
    "help",
    "install",
    "uninstall",
    "add",
    "remove",
    "apt",
    "apt-get",
    "brew",
    "yum",
}

SHELL_LANGUAGES = {"", "bash", "sh", "shell", "console", "zsh"}

_FENCE = re.compile(r"```(\w*)\n([\s\S]*?)```")
_COMMAND_START = re.compile(r"(\S+)[ \t]+(" + "|".join(CLI_COMMANDS) + r")[ \t]+")


def split_commands(line: str) -> str:
    """Put each shell command of a run-together line on its own line."""

    def replace(match: re.Match) -> str:
        previous, command = match.group(1), match.group(2)
        if previous[-1] in "|;&\\" or previous.lower() in PASSTHROUGH:
            return match.group(0)
        return f"{previous}\n{command} "

    if not line.strip():
        return line
    result = line
    # Overlapping matches need another pass
    while True:
        updated = _COMMAND_START.sub(replace, result)
        if updated == result:
            return result
        result = updated


def format_json(content: str) -> str:
    stripped = content.strip()
    if not stripped or "\n" in stripped:
        return content
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        return content
    if not isinstance(data, (dict, list)):
        return content
    return json.dumps(data, indent=2) + "\n"


class CodeBlockFormatter(PostProcessor):
    name = "code-block-formatting"

    def process(self, text: str) -> PostProcessResult:
        def replace(match: re.Match) -> str:
            lang, content = match.group(1), match.group(2)
            if lang.lower() in SHELL_LANGUAGES:
                content = "\n".join(split_commands(line) for line in content.split("\n"))
            elif lang.lower() == "json":
                content = format_json(content)
            return f"```{lang}\n{content}```"

        return PostProcessResult(text=_FENCE.sub(replace, text))
