"""Primitives of the comma separated, quote escaped line format."""


def trim(text: str) -> str:
    """Remove leading and trailing whitespace."""
    return text.strip()


def escape(text: str) -> str:
    """Wrap a string in double quotes, escaping embedded double quotes."""
    return '"' + text.replace('"', '\\"') + '"'


def unescape(text: str) -> str:
    """Reverse :func:`escape`.

    Raises:
        ValueError: If the text is not a quoted string
    """
    if len(text) < 2 or text[0] != '"' or text[-1] != '"' or text[-2] == "\\":
        msg = f"{text} is not properly escaped"
        raise ValueError(msg)
    return text[1:-1].replace('\\"', '"')


def split(line: str, delimiter: str = ",") -> list[str]:
    """Split a line on a delimiter, ignoring delimiters inside quoted literals.

    A double quote preceded by a backslash does not open or close a literal.
    Characters are kept as they are, so quoted tokens still need
    :func:`unescape`. Each token is trimmed.
    """
    tokens = [""]
    escaped = False
    in_literal = False
    for char in line:
        if char == delimiter and not in_literal:
            tokens.append("")
            continue
        if char == '"' and not escaped:
            in_literal = not in_literal
        escaped = not escaped and char == "\\"
        tokens[-1] += char
    return [trim(token) for token in tokens]
