"""Incremental JSON encoding of large list responses."""

import json
from typing import Any, Iterable, Iterator

from fastapi.responses import StreamingResponse


def iter_json_array(pages: Iterable[Iterable[Any]]) -> Iterator[str]:
    """
    Encode rows from successive pages as one JSON array.

    Rows are separated by a comma and a newline. Only the current page is
    held in memory.

    Args:
        pages: Iterable of pages, each an iterable of JSON serializable rows.

    Yields:
        str: Chunks of the JSON document.
    """
    yield "["
    first = True
    for page in pages:
        for row in page:
            if not first:
                yield ",\n"
            first = False
            yield json.dumps(row)
    yield "]"


class JsonStreamResponse(StreamingResponse):
    """
    Streamed ``application/json`` response for list endpoints.

    Status and headers are fixed when the response is constructed and are
    sent before the first chunk of the body is produced.
    """

    media_type = "application/json"

    def __init__(self, pages: Iterable[Iterable[Any]], status_code: int = 200):
        super().__init__(
            iter_json_array(pages),
            status_code=status_code,
            headers={"Cache-Control": "no-store"},
            media_type=self.media_type,
        )
