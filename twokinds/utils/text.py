"""
Text Processing Utilities

1. collapse_whitespace: Normalise user input before validation
2. render_sentence: Turn a saying's parts into the sentence shown to readers
"""

import re


def collapse_whitespace(text: str) -> str:
    """
    Trim text and squeeze internal runs of whitespace to single spaces.

    >>> collapse_whitespace("  read   the\\nending first ")
    'read the ending first'
    """
    return re.sub(r"\s+", " ", text).strip()


def render_sentence(intro_text: str | None, type_name: str | None, first_kind: str, second_kind: str) -> str:
    """
    Build the full "two kinds of" sentence.

    >>> render_sentence("There are two kinds of", "drivers", "signal early", "never signal.")
    'There are two kinds of drivers: Those who signal early and those who never signal.'
    """
    lead = " ".join(part for part in (intro_text, type_name) if part)
    first = first_kind.rstrip(".")
    second = second_kind.rstrip(".")
    return f"{lead}: Those who {first} and those who {second}."
