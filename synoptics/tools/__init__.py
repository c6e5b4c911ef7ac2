"""Plain-data operation facade for the external UI/API layer."""

from .synoptics_tools import SynopticsTools, choose_sides

__all__ = ["SynopticsTools", "choose_sides"]
