"""Download infrastructure used by the artifact resolver."""

from tapship.tools.download import Downloader, DownloadResult
from tapship.tools.http import (
    HttpClient,
    HttpError,
    MockHttpClient,
    RealHttpClient,
)

__all__ = [
    # HTTP
    "HttpClient",
    "HttpError",
    "MockHttpClient",
    "RealHttpClient",
    # Download
    "Downloader",
    "DownloadResult",
]
