# result_reporter.py
from typing import Iterable, List, NamedTuple, Optional

from bt_metadata import FileEntry, Metadata
from resolution_orchestrator import ResolutionResult

GIB = 1024 ** 3
NO_FILE = "no file"


class Report(NamedTuple):
    identifier: str
    path: Optional[str]
    length: int

    @property
    def size_gb(self) -> float:
        return self.length / GIB


def largest_file(metadata: Metadata) -> Optional[FileEntry]:
    """
    The file with the strictly largest length. Ties go to the first file in
    the order the metadata lists them; None when there are no files.
    """
    best = None
    for f in metadata.files:
        if best is None or f.length > best.length:
            best = f
    return best


def report(result: ResolutionResult) -> Report:
    f = largest_file(result.metadata) if result.metadata is not None else None
    if f is None:
        return Report(result.identifier, None, 0)
    return Report(result.identifier, f.path, f.length)


def sort_reports(reports: Iterable[Report]) -> List[Report]:
    """Largest file first; equal sizes keep their relative order."""
    return sorted(reports, key=lambda r: r.length, reverse=True)


def format_report(r: Report) -> str:
    lines = [f"* Magnet: {r.identifier}"]
    if r.path is None:
        lines.append(f"* Largest file: {NO_FILE}")
    else:
        lines.append(f"* Largest file: {r.path}")
        lines.append(f"* Largest file size: {r.size_gb:.2f} GB")
    return "\n".join(lines) + "\n"
