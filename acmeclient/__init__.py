from .client import AcmeClient
from .version import __version__

__all__ = ["AcmeClient"]
__version__ = __version__
