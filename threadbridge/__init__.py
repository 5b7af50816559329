"""threadbridge - keeps chat threads in sync with assistant conversations."""

__version__ = "0.1.0"
__logo__ = "🧵"
