"""Boundary-signal detection and label synthesis for chunking.

Signals come from two small ordered tables:

- ``USER_PATTERNS``: phrasings in a user message that announce a change of
  direction ("Now let's...", "Next:", slash commands).
- ``COMMAND_RULES``: shell commands run through the ``Bash`` tool that mark a
  unit of work as finished (commit, push, PR) or a new branch.

Each entry is independent, so a single command or message can produce several
signals. Text that matches nothing simply yields no signal.
"""

import re
from collections.abc import Callable, Iterable

from cc_trace.models import (
    Block,
    BoundarySignal,
    BranchSwitchSignal,
    GitCommitSignal,
    GitPushSignal,
    PrCreationSignal,
    ToolBlock,
    UserBlock,
    UserPatternSignal,
)

MAX_LABEL_LENGTH = 80
ELLIPSIS = "..."

USER_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("Now let's...", re.compile(r"^now\s+let['’]?s\b", re.IGNORECASE)),
    ("Next:", re.compile(r"^next:", re.IGNORECASE)),
    ("Moving on to...", re.compile(r"moving\s+on\s+to\b", re.IGNORECASE)),
    ("Slash command", re.compile(r"^/[a-z]", re.IGNORECASE)),
]

_GIT_COMMIT = re.compile(r"\bgit\s+commit\b", re.IGNORECASE)
_GIT_PUSH = re.compile(r"\bgit\s+push\b", re.IGNORECASE)
_GH_PR_CREATE = re.compile(r"\bgh\s+pr\s+create\b", re.IGNORECASE)
_BRANCH_CREATE = re.compile(
    r"\bgit\s+(?:checkout\s+-b|switch\s+-c)\s+([^\s;&|]+)(?:[ \t]+([^\s;&|-][^\s;&|]*))?",
    re.IGNORECASE,
)

# -m "$(cat <<'EOF'
# message
# EOF
# )"
_COMMIT_HEREDOC = re.compile(
    r"\bgit\s+commit\b[^\n]*?-m\s+[\"']?\$\(\s*cat\s+<<-?\s*['\"]?(\w+)['\"]?[^\n]*\n(.*?)^\s*\1\s*$",
    re.IGNORECASE | re.DOTALL | re.MULTILINE,
)
_COMMIT_QUOTED = re.compile(
    r"\bgit\s+commit\s+(?:-[^m\s]\S*\s+)*-m\s+(?:\"([^\"]*)\"|'([^']*)')",
    re.IGNORECASE,
)
_PR_NUMBER = re.compile(r"/pull/(\d+)")
_SENTENCE = re.compile(r"^([^.!?]+)[.!?]")


def truncate_label(text: str) -> str:
    """Clamp a label to MAX_LABEL_LENGTH characters, marking the cut with '...'."""
    if len(text) <= MAX_LABEL_LENGTH:
        return text
    return text[: MAX_LABEL_LENGTH - len(ELLIPSIS)] + ELLIPSIS


def extract_label(content: str) -> str:
    """Label from user content: its first sentence, or the whole text if none."""
    trimmed = content.strip()
    match = _SENTENCE.match(trimmed)
    if match:
        return truncate_label(match.group(1).strip())
    return truncate_label(trimmed)


def detect_user_pattern(content: str) -> str | None:
    """Name of the first direction-change pattern the message matches."""
    trimmed = content.strip()
    for name, regex in USER_PATTERNS:
        if regex.search(trimmed):
            return name
    return None


def bash_command(block: Block) -> str | None:
    """The shell command of a Bash tool call, if the block is one."""
    if not isinstance(block, ToolBlock) or block.tool_name != "Bash":
        return None
    if not isinstance(block.input, dict):
        return None
    command = block.input.get("command")
    return command if isinstance(command, str) else None


def extract_commit_message(command: str) -> str | None:
    """Commit message passed with -m, either quoted or as a heredoc.

    For a heredoc the message is the first non-empty line of its body.
    Forms that match neither shape yield None.
    """
    heredoc = _COMMIT_HEREDOC.search(command)
    if heredoc:
        for line in heredoc.group(2).splitlines():
            if line.strip():
                return line.strip()
        return None

    quoted = _COMMIT_QUOTED.search(command)
    if quoted:
        message = quoted.group(1) if quoted.group(1) is not None else quoted.group(2)
        if message.lstrip().startswith("$("):
            return None
        return message.strip() or None
    return None


def _option_value(command: str, *names: str) -> str | None:
    for name in names:
        match = re.search(
            rf"(?:^|\s){re.escape(name)}(?:\s+|=)(?:\"([^\"]*)\"|'([^']*)')", command
        )
        if match:
            value = match.group(1) if match.group(1) is not None else match.group(2)
            return value.strip() or None
    return None


def _commit_signal(command: str, output: object) -> BoundarySignal | None:
    if not _GIT_COMMIT.search(command):
        return None
    return GitCommitSignal(message=extract_commit_message(command))


def _push_signal(command: str, output: object) -> BoundarySignal | None:
    if _GIT_PUSH.search(command):
        return GitPushSignal()
    return None


def _pr_signal(command: str, output: object) -> BoundarySignal | None:
    if not _GH_PR_CREATE.search(command):
        return None
    pr_number = None
    if isinstance(output, str):
        number = _PR_NUMBER.search(output)
        if number:
            pr_number = number.group(1)
    return PrCreationSignal(
        pr_number=pr_number,
        title=_option_value(command, "--title", "-t"),
        body=_option_value(command, "--body", "-b"),
    )


def _branch_signal(command: str, output: object) -> BoundarySignal | None:
    match = _BRANCH_CREATE.search(command)
    if not match:
        return None
    return BranchSwitchSignal(
        from_branch=(match.group(2) or "").strip("'\""),
        to_branch=match.group(1).strip("'\""),
    )


CommandRule = Callable[[str, object], BoundarySignal | None]

COMMAND_RULES: list[tuple[str, CommandRule]] = [
    ("git-commit", _commit_signal),
    ("git-push", _push_signal),
    ("pr-creation", _pr_signal),
    ("branch-switch", _branch_signal),
]


def command_signals(block: Block) -> list[BoundarySignal]:
    """Signals produced by one tool block, in COMMAND_RULES order."""
    command = bash_command(block)
    if command is None:
        return []
    output = block.output if isinstance(block, ToolBlock) else None
    signals: list[BoundarySignal] = []
    for _name, rule in COMMAND_RULES:
        signal = rule(command, output)
        if signal is not None:
            signals.append(signal)
    return signals


def closing_signals(blocks: Iterable[Block]) -> list[BoundarySignal]:
    """Signals from every Bash call in a finished turn."""
    signals: list[BoundarySignal] = []
    for block in blocks:
        signals.extend(command_signals(block))
    return signals


def pr_label(signal: PrCreationSignal) -> str:
    if signal.title:
        return f"PR: {signal.title}"
    if signal.body:
        first_line = next((line.strip() for line in signal.body.splitlines() if line.strip()), "")
        if first_line:
            return f"PR: {first_line}"
    if signal.pr_number:
        return f"PR #{signal.pr_number}"
    return "PR created"


def generate_label(blocks: list[Block], fallback: str = "Turn") -> str:
    """Label for a turn.

    Priority: commit message, then PR, then the first sentence of the first
    user message, then ``fallback``.
    """
    signals = closing_signals(blocks)

    for signal in signals:
        if isinstance(signal, GitCommitSignal) and signal.message:
            return truncate_label(signal.message)

    for signal in signals:
        if isinstance(signal, PrCreationSignal):
            return truncate_label(pr_label(signal))

    for block in blocks:
        if isinstance(block, UserBlock) and not block.is_meta:
            if block.content.strip():
                return extract_label(block.content)
            break

    return fallback


def user_pattern_signal(block: UserBlock) -> UserPatternSignal | None:
    pattern = detect_user_pattern(block.content)
    if pattern is None:
        return None
    return UserPatternSignal(pattern=pattern)
