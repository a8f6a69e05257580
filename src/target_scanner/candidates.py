"""Candidate and target records shared by every pipeline stage.

All coordinates are frame-absolute. Stages convert to ROI-relative
coordinates locally, using the ROI offset, when they need to index into
ROI-sized images.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field


@dataclass
class BBox:
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def copy(self) -> BBox:
        return BBox(self.x, self.y, self.width, self.height)


@dataclass
class Candidate:
    """A provisional detected region.

    Owned by whichever stage is currently transforming the working list.
    The merger grows ``bbox`` and accumulates ``area``; the splitter replaces
    a candidate with derived ones.
    """

    bbox: BBox
    area: float
    cx: float
    cy: float

    @property
    def center_y(self) -> float:
        """Vertical center of the bounding box (not the moment centroid)."""
        return self.bbox.y + self.bbox.height / 2

    def copy(self) -> Candidate:
        return Candidate(self.bbox.copy(), self.area, self.cx, self.cy)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Target:
    """A candidate that survived the whole pipeline.

    ``text`` and ``confidence`` are set only when the recognition stage
    confirmed the region; overflow and OCR-disabled targets leave them None.
    """

    x: int
    y: int
    width: int
    height: int
    area: float
    cx: float
    cy: float
    text: str | None = field(default=None, compare=False)
    confidence: float | None = field(default=None, compare=False)

    @classmethod
    def from_candidate(
        cls,
        candidate: Candidate,
        text: str | None = None,
        confidence: float | None = None,
    ) -> Target:
        b = candidate.bbox
        return cls(
            b.x, b.y, b.width, b.height,
            candidate.area, candidate.cx, candidate.cy,
            text, confidence,
        )

    @property
    def bbox(self) -> BBox:
        return BBox(self.x, self.y, self.width, self.height)

    def to_dict(self) -> dict:
        return {
            "bbox": {"x": self.x, "y": self.y, "width": self.width, "height": self.height},
            "area": self.area,
            "cx": self.cx,
            "cy": self.cy,
            "text": self.text,
            "confidence": self.confidence,
        }
