"""
Point and rectangle math for Pong Throw Tracker.

Two coordinate spaces are used throughout:
- Normalized: [0, 1] on both axes, origin bottom-left (detector output)
- View: pixel units, origin top-left, y grows downward
"""

import math
from typing import Optional, Tuple
from dataclasses import dataclass


@dataclass(frozen=True)
class Point:
    """2D point."""
    x: float
    y: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def distance_to(self, other: 'Point') -> float:
        """Euclidean distance to another point."""
        return math.hypot(self.x - other.x, self.y - other.y)


ZERO_POINT = Point(0.0, 0.0)


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle (origin is the minimum corner)."""
    x: float
    y: float
    width: float
    height: float

    @property
    def min_x(self) -> float:
        return self.x

    @property
    def min_y(self) -> float:
        return self.y

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    @property
    def mid_x(self) -> float:
        return self.x + self.width / 2

    def contains(self, point: Point) -> bool:
        """Half-open containment test, min <= v < max on both axes."""
        return (
            self.min_x <= point.x < self.max_x and
            self.min_y <= point.y < self.max_y
        )

    def contains_rect(self, other: 'Rect') -> bool:
        """True if other lies entirely inside this rectangle."""
        return (
            other.min_x >= self.min_x and other.max_x <= self.max_x and
            other.min_y >= self.min_y and other.max_y <= self.max_y
        )

    def union_point(self, point: Point) -> 'Rect':
        """Smallest rectangle covering this one and the point."""
        min_x = min(self.min_x, point.x)
        min_y = min(self.min_y, point.y)
        max_x = max(self.max_x, point.x)
        max_y = max(self.max_y, point.y)
        return Rect(min_x, min_y, max_x - min_x, max_y - min_y)

    def inset(self, dx: float, dy: float) -> 'Rect':
        """Shrink by dx/dy on each side (negative values grow the rect)."""
        return Rect(self.x + dx, self.y + dy, self.width - 2 * dx, self.height - 2 * dy)

    def with_origin_x(self, x: float) -> 'Rect':
        return Rect(x, self.y, self.width, self.height)

    def as_list(self) -> list:
        return [self.x, self.y, self.width, self.height]


def distance(a: Point, b: Point) -> float:
    return a.distance_to(b)


def angle_from_horizontal(a: Point, b: Point) -> float:
    """Absolute angle of the segment a->b from horizontal, degrees rounded to 2 places."""
    angle = math.atan2(b.y - a.y, b.x - a.x)
    return round(abs(math.degrees(angle)), 2)


def normalized_to_view(point: Point, view_size: Tuple[float, float]) -> Point:
    """Flip the vertical axis, then scale to view bounds."""
    width, height = view_size
    return Point(point.x * width, (1.0 - point.y) * height)


def view_to_normalized(point: Point, view_size: Tuple[float, float]) -> Point:
    """Inverse of normalized_to_view: scale down, then flip."""
    width, height = view_size
    if width <= 0 or height <= 0:
        return ZERO_POINT
    return Point(point.x / width, 1.0 - point.y / height)


def normalized_rect_to_view(rect: Rect, view_size: Tuple[float, float]) -> Rect:
    """Convert a normalized (bottom-left origin) rect to a view rect."""
    width, height = view_size
    return Rect(
        rect.x * width,
        (1.0 - rect.y - rect.height) * height,
        rect.width * width,
        rect.height * height
    )


def bounding_rect(points) -> Optional[Rect]:
    """Bounding rectangle of an iterable of points, None when empty."""
    box: Optional[Rect] = None
    for point in points:
        if box is None:
            box = Rect(point.x, point.y, 0.0, 0.0)
        else:
            box = box.union_point(point)
    return box
