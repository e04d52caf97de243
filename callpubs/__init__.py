"""callpubs - CALL publication catalog synchronizer.

Keeps an offline catalog of military publications in step with a remote
JSON listing, downloads documents and cover images, and repairs download
state after restarts.
"""

__version__ = "1.0.0"

from callpubs.config import Settings
from callpubs.models.publication import Publication, PublicationStatus

__all__ = ["Publication", "PublicationStatus", "Settings", "__version__"]
