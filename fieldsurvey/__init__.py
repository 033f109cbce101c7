"""Field survey form engine with offline-first local storage and pull/push sync."""

__version__ = "0.1.0"
