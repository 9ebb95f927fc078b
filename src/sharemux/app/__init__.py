"""Applications the host can drive."""

from .scratchpad import Application, ScratchpadApp

__all__ = ["Application", "ScratchpadApp"]
