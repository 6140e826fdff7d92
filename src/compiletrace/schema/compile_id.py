"""
Compile identifier schema.

A compile id names one compilation attempt of one captured frame.

String form
-----------
    [!<compiled_autograd_id>_]<frame_id>_<frame_compile_id>[_<attempt>]

Examples: ``0_1``, ``0_1_2``, ``!3_0_1``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

# Directory key for output that belongs to no compile id.
GLOBAL_KEY = "__global__"


@dataclass(frozen=True)
class CompileId:
    """
    Structural compile identifier. Equal fields mean the same compilation.
    """

    frame_id: Optional[int]
    frame_compile_id: Optional[int] = None
    attempt: Optional[int] = None
    compiled_autograd_id: Optional[int] = None

    def __str__(self) -> str:
        prefix = ""
        if self.compiled_autograd_id is not None:
            prefix = f"!{self.compiled_autograd_id}_"
        frame = "-" if self.frame_id is None else str(self.frame_id)
        text = f"{prefix}{frame}_{'-' if self.frame_compile_id is None else self.frame_compile_id}"
        if self.attempt is not None:
            text += f"_{self.attempt}"
        return text

    @property
    def display_name(self) -> str:
        """Human label, e.g. ``0/1`` or ``0/1 (attempt 2)``."""
        prefix = ""
        if self.compiled_autograd_id is not None:
            prefix = f"!{self.compiled_autograd_id}/"
        frame = "?" if self.frame_id is None else str(self.frame_id)
        fcid = "?" if self.frame_compile_id is None else str(self.frame_compile_id)
        label = f"{prefix}{frame}/{fcid}"
        if self.attempt:
            label += f" (attempt {self.attempt})"
        return label

    def sort_key(self) -> Tuple[int, int, int, int]:
        return (
            -1 if self.compiled_autograd_id is None else self.compiled_autograd_id,
            -1 if self.frame_id is None else self.frame_id,
            -1 if self.frame_compile_id is None else self.frame_compile_id,
            0 if self.attempt is None else self.attempt,
        )

    @staticmethod
    def parse(text: str) -> "CompileId":
        """
        Inverse of ``str(compile_id)``.

        Raises
        ------
        ValueError
            If `text` is not a compile id string.
        """
        raw = text.strip()
        compiled_autograd_id = None
        if raw.startswith("!"):
            head, sep, raw = raw[1:].partition("_")
            if not sep:
                raise ValueError(f"invalid compile id {text!r}")
            compiled_autograd_id = _parse_part(head, text)

        parts = raw.split("_")
        if len(parts) not in (2, 3):
            raise ValueError(f"invalid compile id {text!r}")

        return CompileId(
            frame_id=_parse_part(parts[0], text),
            frame_compile_id=_parse_part(parts[1], text),
            attempt=_parse_part(parts[2], text) if len(parts) == 3 else None,
            compiled_autograd_id=compiled_autograd_id,
        )

    @staticmethod
    def from_fields(data: Dict[str, Any]) -> Optional["CompileId"]:
        """
        Build a compile id from the top-level fields of a raw log record.

        Returns None when the record carries no frame or compiled autograd id.
        """
        frame_id = _opt_int(data.get("frame_id"))
        compiled_autograd_id = _opt_int(data.get("compiled_autograd_id"))
        if frame_id is None and compiled_autograd_id is None:
            return None
        return CompileId(
            frame_id=frame_id,
            frame_compile_id=_opt_int(data.get("frame_compile_id")),
            attempt=_opt_int(data.get("attempt")),
            compiled_autograd_id=compiled_autograd_id,
        )


def _parse_part(part: str, text: str) -> Optional[int]:
    if part == "-":
        return None
    try:
        return int(part)
    except ValueError:
        raise ValueError(f"invalid compile id {text!r}") from None


def _opt_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    raise ValueError(f"expected integer id, got {value!r}")
