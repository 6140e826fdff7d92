from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from compiletrace.errors import DanglingStringReference, MalformedLine


class StringTable:
    """
    Interned string table for one capture.

    Populated from the optional header line and from `str` records, and
    consulted by the normalizer whenever a field carries an integer id
    instead of a string.
    """

    def __init__(self, entries: Optional[Mapping[int, str]] = None):
        self._entries: Dict[int, str] = dict(entries or {})

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, string_id: int) -> bool:
        return string_id in self._entries

    def items(self) -> Iterator[Tuple[int, str]]:
        return iter(self._entries.items())

    def as_dict(self) -> Dict[int, str]:
        return dict(self._entries)

    def add(self, string_id: int, value: str) -> None:
        self._entries[int(string_id)] = value

    def lookup(self, string_id: int) -> str:
        """
        Raises
        ------
        DanglingStringReference
            If `string_id` was never interned.
        """
        try:
            return self._entries[string_id]
        except KeyError:
            raise DanglingStringReference(string_id) from None

    def load_header(self, header: Any) -> int:
        """
        Merge a `{"<id>": "<string>"}` header mapping. Returns entries added.
        """
        if not isinstance(header, dict):
            raise MalformedLine("string table header must be an object")
        added = 0
        for key, value in header.items():
            try:
                string_id = int(key)
            except (TypeError, ValueError):
                raise MalformedLine(f"string table id {key!r} is not an integer") from None
            if not isinstance(value, str):
                raise MalformedLine(f"string table entry {key!r} is not a string")
            self._entries[string_id] = value
            added += 1
        return added
