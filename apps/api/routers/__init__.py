"""Routers package."""

from . import (
    health,
    billing,
    generations,
    wallpapers,
    ownership,
)
