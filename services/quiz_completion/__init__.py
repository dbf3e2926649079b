# services/quiz_completion/__init__.py
"""quiz completion service package initializer: explicit exports only; no runtime side effects."""

__all__ = [
    "app",
    "routes",
    "service",
    "validation",
    "scorer",
    "recorder",
    "dispatcher",
    "effects",
    "course_progress",
    "streak",
    "badges",
    "usage_limits",
    "adaptive",
]
