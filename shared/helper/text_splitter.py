"""Recursive chunk splitter.

Splits long text on a hierarchy of delimiters (paragraph break, line break,
space, single characters) until every piece fits the size limit. Delimiters
stay attached to the piece they end, so ``"".join(pieces) == text`` always holds.
"""

DEFAULT_DELIMITERS: list[str] = ["\n\n", "\n", " ", ""]


def _split_keep_delimiter(text: str, delimiter: str) -> list[str]:
    """Splits text after every delimiter occurrence, keeping the delimiter.

    An empty delimiter splits into single characters.
    """
    if delimiter == "":
        return list(text)
    parts = text.split(delimiter)
    pieces = [part + delimiter for part in parts[:-1]]
    if parts[-1]:
        pieces.append(parts[-1])
    return pieces


def _merge_pieces(pieces: list[str], max_size: int) -> list[str]:
    """Greedily merges adjacent pieces while the result stays within max_size."""
    merged: list[str] = []
    current = ""
    for piece in pieces:
        if current and len(current) + len(piece) > max_size:
            merged.append(current)
            current = piece
        else:
            current += piece
    if current:
        merged.append(current)
    return merged


def split_recursive(text: str, max_size: int, delimiters: list[str] | None = None) -> list[str]:
    """Splits text into pieces of at most max_size characters.

    Args:
        text (str): The text to split.
        max_size (int): Maximum piece length in characters. Values <= 0 disable
            splitting and return the text as a single piece.
        delimiters (list[str] | None): Delimiters in priority order. Defaults to
            paragraph break, line break, space and character level.

    Returns:
        list[str]: Pieces in original order. A piece longer than max_size only
        occurs when it cannot be divided by any remaining delimiter; such a
        piece is returned whole, never truncated.
    """
    if delimiters is None:
        delimiters = DEFAULT_DELIMITERS
    if max_size <= 0 or len(text) <= max_size:
        return [text]
    if not delimiters:
        return [text]

    delimiter, rest = delimiters[0], delimiters[1:]
    flat: list[str] = []
    for piece in _split_keep_delimiter(text, delimiter):
        if len(piece) <= max_size:
            flat.append(piece)
        else:
            flat.extend(split_recursive(piece, max_size, rest))
    return _merge_pieces(flat, max_size)
