# keyword_filter.py
from typing import Iterable, Iterator, Sequence


def matches(line: str, keywords: Sequence[str]) -> bool:
    """
    True iff every keyword occurs in line, ignoring case. An empty keyword
    list matches everything; the CLI refuses to run with one.
    """
    folded = line.casefold()
    return all(k.casefold() in folded for k in keywords)


def qualifying(lines: Iterable[str], keywords: Sequence[str]) -> Iterator[str]:
    """Trim each line and yield the non-blank ones that match."""
    for line in lines:
        line = line.strip()
        if line and matches(line, keywords):
            yield line
