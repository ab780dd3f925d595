"""
chart-releaser

Hosts Helm chart repositories on GitHub: packages charts, publishes them as
GitHub releases and maintains the repository index on the pages branch.
"""

from .__version__ import __version__
from .errors import ChartReleaserError
from .releaser import Releaser

__all__ = ["Releaser", "ChartReleaserError", "__version__"]
