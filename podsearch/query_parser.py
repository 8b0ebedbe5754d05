from typing import List, NamedTuple, Optional

from podsearch.models import ParsedQuery


class _Token(NamedTuple):
    text: str
    is_phrase: bool
    next_pos: int


def parse_search_query(query: str) -> ParsedQuery:
    """
    Split a raw query into terms, "exact phrases", -excluded terms and
    -"excluded phrases", scanning left to right one character at a time.
    Order of first occurrence is kept inside each bucket; duplicates are kept.
    """
    parsed = ParsedQuery()
    pos = 0
    n = len(query)

    while pos < n:
        ch = query[pos]
        if ch == " ":
            pos += 1
            continue

        excluded = ch == "-"
        if excluded:
            pos += 1

        tok = _read_token(query, pos)
        if tok is None:
            # bare '-' at end of input
            break
        pos = tok.next_pos

        if excluded:
            bucket = parsed.excluded_phrases if tok.is_phrase else parsed.excluded_terms
        else:
            bucket = parsed.exact_phrases if tok.is_phrase else parsed.terms
        bucket.append(tok.text)

    return parsed


def _read_token(query: str, start: int) -> Optional[_Token]:
    pos = start
    n = len(query)
    while pos < n and query[pos] == " ":
        pos += 1
    if pos >= n:
        return None
    if query[pos] == '"':
        return _read_quoted(query, pos)
    return _read_word(query, pos)


def _read_quoted(query: str, start: int) -> _Token:
    # unterminated quotes run to end of input
    pos = start + 1
    n = len(query)
    chars: List[str] = []
    while pos < n and query[pos] != '"':
        chars.append(query[pos])
        pos += 1
    if pos < n:
        pos += 1  # closing quote
    return _Token("".join(chars).strip(), True, pos)


def _read_word(query: str, start: int) -> _Token:
    pos = start
    n = len(query)
    while pos < n and query[pos] != " ":
        pos += 1
    return _Token(query[start:pos], False, pos)


def build_search_query(parsed: ParsedQuery) -> str:
    """Serialize back to backend syntax: terms, "phrases", -terms, -"phrases"."""
    parts: List[str] = []
    parts.extend(parsed.terms)
    parts.extend(f'"{p}"' for p in parsed.exact_phrases)
    parts.extend(f"-{t}" for t in parsed.excluded_terms)
    parts.extend(f'-"{p}"' for p in parsed.excluded_phrases)
    return " ".join(parts)
