from __future__ import annotations

from enum import Enum


class ModelClass(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    EMBEDDING = "embedding"
    IMAGE = "image"
