"""Truncation of tool output before it is appended to history."""

from dataclasses import dataclass

MAX_TOOL_RESULT_CHARS = 8000


@dataclass
class TruncationResult:
    """Result of truncation operation."""

    content: str
    truncated: bool
    total_chars: int
    output_chars: int

    def to_metadata(self) -> dict[str, int | bool]:
        meta: dict[str, int | bool] = {
            "truncated": self.truncated,
            "total_chars": self.total_chars,
        }
        if self.truncated:
            meta["output_chars"] = self.output_chars
        return meta


def truncation_marker(total_chars: int) -> str:
    return f"\n\n... [truncated: {total_chars} total characters]"


def truncate_text(text: str, max_chars: int = MAX_TOOL_RESULT_CHARS) -> TruncationResult:
    """Keep the head of ``text`` and append a marker if it was cut.

    The marker is included in ``max_chars``, so the returned content never
    exceeds the limit unless the limit is smaller than the marker itself.
    """
    total = len(text)
    if total <= max_chars:
        return TruncationResult(
            content=text, truncated=False, total_chars=total, output_chars=total
        )

    marker = truncation_marker(total)
    keep = max(max_chars - len(marker), 0)
    content = text[:keep] + marker
    return TruncationResult(
        content=content, truncated=True, total_chars=total, output_chars=keep
    )
