"""Interactive intent gathering. Every prompt falls back to its default on EOF."""

from typing import Sequence


def prompt(message: str, default: str = "") -> str:
    """
    Prompt the user for input, showing the default in brackets.

    Returns:
        User input or default value
    """
    try:
        response = input(f"{message} [{default}]: ").strip()
    except EOFError:
        print()
        return default
    return response or default


def choose(message: str, choices: Sequence[str], default: str) -> str:
    """
    Prompt until the answer is one of ``choices``.

    Args:
        message: The question to ask
        choices: Accepted answers (compared case-insensitively)
        default: Answer used on Enter or EOF

    Returns:
        The chosen value, lowercased
    """
    label = f"{message} ({'|'.join(choices)})"
    while True:
        answer = prompt(label, default).lower()
        if answer in choices:
            return answer
        print(f"  Please answer one of: {', '.join(choices)}")


def confirm(message: str, default: bool = False) -> bool:
    """
    Ask a yes/no question.

    Returns:
        True if user confirmed, False otherwise
    """
    prompt_suffix = "[Y/n]" if default else "[y/N]"

    while True:
        try:
            response = input(f"{message} {prompt_suffix}: ").strip().lower()
        except EOFError:
            print()
            return default

        if not response:
            return default
        if response in ("y", "yes"):
            return True
        if response in ("n", "no"):
            return False
        print("  Please answer 'y' or 'n'")
