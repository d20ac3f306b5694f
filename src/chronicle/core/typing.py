"""Shared typing aliases used across modules."""

from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeAlias

JSONDict: TypeAlias = dict[str, Any]
StatDeltas: TypeAlias = dict[str, int]
Clock: TypeAlias = Callable[[], datetime]
