"""Multipart parsing for uploads, with the size cap applied while the body arrives."""

from typing import AsyncIterator

from fastapi import Request
from starlette.datastructures import FormData
from starlette.formparsers import MultiPartException, MultiPartParser

from filedrop.features.storage.domain.errors import SizeExceeded, ValidationError

# Room for the boundary lines, part headers and the small text fields
FORM_OVERHEAD_BYTES = 64 * 1024


async def _capped(stream: AsyncIterator[bytes], limit: int, size_limit: int) -> AsyncIterator[bytes]:
    received = 0
    async for chunk in stream:
        received += len(chunk)
        if received > limit:
            raise SizeExceeded(size_limit)
        yield chunk


async def read_upload_form(request: Request, size_limit: int) -> FormData:
    """
    Parses a multipart/form-data body, refusing it as soon as it grows past
    `size_limit` plus form overhead. A body that is too large is never
    spooled to disk in full.

    Returns empty FormData for anything that is not multipart.
    """
    if not request.headers.get("content-type", "").startswith("multipart/form-data"):
        return FormData()

    if "boundary=" not in request.headers["content-type"]:
        raise ValidationError("Malformed upload: missing multipart boundary")

    limit = size_limit + FORM_OVERHEAD_BYTES
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > limit:
        raise SizeExceeded(size_limit)

    parser = MultiPartParser(request.headers, _capped(request.stream(), limit, size_limit))
    try:
        return await parser.parse()
    except MultiPartException as e:
        raise ValidationError(f"Malformed upload: {e.message}")
