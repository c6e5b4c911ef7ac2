"""Medical-gas synoptics: hierarchical gas-network model, column auto-layout
and orthogonal connector routing."""

__version__ = "0.1.0"

from synoptics.core import CascadeResolver, LayoutStore, NetworkStore, QueryCache
from synoptics.tools import SynopticsTools

__all__ = [
    "__version__",
    "CascadeResolver",
    "LayoutStore",
    "NetworkStore",
    "QueryCache",
    "SynopticsTools",
]
