"""Typed Figma REST API response models.

Pydantic v2 models for the handful of response shapes the CLI reads.  The
API uses camelCase; fields are snake_case here with camelCase aliases, and
``populate_by_name`` lets both spellings validate (cached payloads are
dumped ``by_alias`` and so round-trip through the same aliases).

Unknown fields are kept (``extra="allow"``) so nothing the API sends is
lost when a response is written to and read back from the cache.
"""

from __future__ import annotations

from typing import Iterator

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _FigmaModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(_FigmaModel):
    """Returned by ``GET /v1/me``."""

    id: str
    email: str = ""
    handle: str
    img_url: str | None = Field(default=None, alias="img_url")


# ---------------------------------------------------------------------------
# Documents and nodes
# ---------------------------------------------------------------------------


class BoundingBox(_FigmaModel):
    x: float
    y: float
    width: float
    height: float


class Color(_FigmaModel):
    """RGBA colour with channels in 0..1."""

    r: float
    g: float
    b: float
    a: float = 1.0

    def to_rgb(self) -> tuple[int, int, int]:
        return (
            _channel(self.r),
            _channel(self.g),
            _channel(self.b),
        )

    def to_hex(self) -> str:
        """``#RRGGBB`` (alpha dropped)."""
        r, g, b = self.to_rgb()
        return f"#{r:02X}{g:02X}{b:02X}"


def _channel(value: float) -> int:
    return max(0, min(255, int(value * 255.0)))


class Paint(_FigmaModel):
    paint_type: str = Field(alias="type")
    color: Color | None = None
    opacity: float | None = None


class TypeStyle(_FigmaModel):
    font_family: str | None = None
    font_weight: float | None = None
    font_size: float | None = None
    line_height_px: float | None = None
    letter_spacing: float | None = None


class Node(_FigmaModel):
    """A node anywhere in the document tree."""

    id: str
    name: str
    node_type: str = Field(alias="type")
    children: list[Node] | None = None
    absolute_bounding_box: BoundingBox | None = None
    fills: list[Paint] | None = None
    strokes: list[Paint] | None = None
    style: TypeStyle | None = None

    def walk(self) -> Iterator[Node]:
        """Yield this node and every descendant, depth first."""
        yield self
        for child in self.children or []:
            yield from child.walk()


Node.model_rebuild()


class Document(_FigmaModel):
    id: str
    name: str
    node_type: str = Field(alias="type")
    children: list[Node] | None = None

    def all_node_ids(self) -> list[str]:
        """Every node ID below the document root, depth first."""
        return [node.id for child in self.children or [] for node in child.walk()]

    def frame_ids(self) -> list[str]:
        """IDs of top-level frames and components on every page (canvas)."""
        ids: list[str] = []
        for page in self.children or []:
            if page.node_type != "CANVAS":
                continue
            for frame in page.children or []:
                if frame.node_type in ("FRAME", "COMPONENT"):
                    ids.append(frame.id)
        return ids


class Component(_FigmaModel):
    key: str
    name: str
    description: str = ""


class Style(_FigmaModel):
    key: str
    name: str
    style_type: str
    description: str | None = None


class File(_FigmaModel):
    """Returned by ``GET /v1/files/:key``."""

    name: str
    last_modified: str
    thumbnail_url: str | None = None
    version: str
    document: Document
    components: dict[str, Component] = Field(default_factory=dict)
    styles: dict[str, Style] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Image export
# ---------------------------------------------------------------------------


class ImageResponse(_FigmaModel):
    """Returned by ``GET /v1/images/:key`` and ``/files/:key/images``.

    ``images`` maps node ID to a signed download URL, or ``None`` when the
    node could not be rendered.
    """

    images: dict[str, str | None] = Field(default_factory=dict)
    err: str | None = None
    status: int | None = None


# ---------------------------------------------------------------------------
# Teams, projects and versions
# ---------------------------------------------------------------------------


class Project(_FigmaModel):
    id: str
    name: str


class ProjectsResponse(_FigmaModel):
    projects: list[Project] = Field(default_factory=list)


class ProjectFile(_FigmaModel):
    key: str
    name: str
    thumbnail_url: str | None = None
    last_modified: str


class ProjectFilesResponse(_FigmaModel):
    files: list[ProjectFile] = Field(default_factory=list)


class VersionUser(_FigmaModel):
    handle: str
    img_url: str | None = Field(default=None, alias="img_url")


class Version(_FigmaModel):
    id: str
    created_at: str = Field(alias="created_at")
    label: str | None = None
    description: str | None = None
    user: VersionUser | None = None


class VersionsResponse(_FigmaModel):
    versions: list[Version] = Field(default_factory=list)
