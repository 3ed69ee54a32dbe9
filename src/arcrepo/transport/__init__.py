"""
arcrepo.transport - HTTP Transport and Wire Codecs
====================================================

    - http:   HttpTransport, the httpx adapter with error translation
    - codec:  framed HTTP responses and multipart bodies
"""

from arcrepo.transport.codec import MultipartReader, read_http_response_header
from arcrepo.transport.http import HttpTransport

__all__ = ["HttpTransport", "MultipartReader", "read_http_response_header"]
