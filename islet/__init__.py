"""
Islet - popover surface state engine

Drives a transient assistant surface through its states:
- Closed / Hovering: nothing shown, or a pre-open affordance
- Opened: prompt, processing, result, menu or dictation content
- Closed processing: surface hidden while a job keeps running
"""

from .__version__ import (
    __version__,
    __title__,
    __description__,
    __author__,
    __author_email__,
    __license__,
    __url__,
    VERSION_INFO,
)

__all__ = [
    "__version__",
    "__title__",
    "__description__",
    "__author__",
    "__author_email__",
    "__license__",
    "__url__",
    "VERSION_INFO",
]
