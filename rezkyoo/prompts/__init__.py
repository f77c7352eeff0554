"""Prompt templates for the RezKyoo classification agents."""

from pathlib import Path

PROMPT_DIR = Path(__file__).parent


def load_prompt(name: str) -> str:
    """Load a prompt as agent instructions.

    Args:
        name: Name of the prompt file (without .md extension)

    Returns:
        Prompt text

    Raises:
        FileNotFoundError: If no prompt file has that name
    """
    prompt_file = PROMPT_DIR / f"{name}.md"

    if not prompt_file.exists():
        raise FileNotFoundError(f"Prompt template not found: {prompt_file}")

    return prompt_file.read_text()


__all__ = ["load_prompt"]
