from dataclasses import dataclass
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class FrameSummary:
    """One captured stack frame, with its filename already resolved."""

    filename: str
    line: int
    name: str
    loc: str = ""

    def key(self) -> Tuple[str, int, str, str]:
        return (self.filename, self.line, self.name, self.loc)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "line": int(self.line),
            "name": self.name,
            "loc": self.loc,
        }

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "FrameSummary":
        filename = data.get("filename", "")
        return FrameSummary(
            filename="" if filename is None else str(filename),
            line=int(data.get("line") or 0),
            name=str(data.get("name", "")),
            loc=str(data.get("loc") or ""),
        )
