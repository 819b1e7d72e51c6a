"""Parsing of Figma URLs and file-key shorthands.

Accepted inputs::

    https://www.figma.com/file/abc123/File-Name
    https://www.figma.com/design/abc123/File-Name?node-id=123-456
    https://figma.com/proto/abc123
    abc123               (bare file key)
    abc123:123:456       (file key with node ID)

Node IDs in browser URLs use ``-`` (``123-456``); the API wants ``:``
(``123:456``), so they are converted.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import parse_qs, unquote, urlparse

from fgm.utils.errors import InvalidURLError

_FILE_TYPES = ("file", "design", "proto", "board")


@dataclass(frozen=True)
class FigmaUrl:
    file_key: str
    node_id: str | None = None
    # Human-readable file name from the URL slug, if present.
    file_name: str | None = None

    @classmethod
    def parse(cls, text: str) -> FigmaUrl:
        """Parse a Figma URL or file key.

        Raises
        ------
        InvalidURLError
            For non-Figma hosts, unknown URL types, or empty input.
        """
        value = text.strip()
        if not value:
            raise InvalidURLError(message="Empty file key or URL")

        if value.startswith(("http://", "https://")):
            return cls._parse_url(value)

        split = cls._split_key_with_node(value)
        if split is not None:
            return cls(file_key=split[0], node_id=split[1])

        return cls(file_key=value)

    @classmethod
    def _parse_url(cls, value: str) -> FigmaUrl:
        parsed = urlparse(value)
        host = parsed.hostname or ""
        if not host:
            raise InvalidURLError(message=f"Invalid URL: no host in {value!r}")
        if host != "figma.com" and not host.endswith(".figma.com"):
            raise InvalidURLError(message=f"Not a Figma URL: {host}")

        segments = [s for s in parsed.path.split("/") if s]
        if len(segments) < 2:
            raise InvalidURLError(message="Invalid Figma URL: missing file key")
        if segments[0] not in _FILE_TYPES:
            raise InvalidURLError(message=f"Invalid Figma URL type: {segments[0]}")

        file_name = None
        if len(segments) > 2:
            file_name = unquote(segments[2]).replace("-", " ")

        node_values = parse_qs(parsed.query).get("node-id")
        node_id = node_values[0].replace("-", ":") if node_values else None

        return cls(file_key=segments[1], node_id=node_id, file_name=file_name)

    @staticmethod
    def _split_key_with_node(value: str) -> tuple[str, str] | None:
        # "abc123:1:2" -> ("abc123", "1:2").  The node part must itself
        # contain a colon, and the key must be alphanumeric.
        file_key, sep, node_id = value.partition(":")
        if sep and file_key.isalnum() and ":" in node_id:
            return file_key, node_id
        return None

    @staticmethod
    def is_figma_url(text: str) -> bool:
        return "figma.com/" in text
