"""
Line-oriented decoder for the JD analysis stream.

The server writes one JSON object per line, discriminated by ``type``:

    {"type": "progress", "stage": "Analyzing tasks"}
    {"type": "result", "data": {...}}
    {"type": "error", "error": "...", "details": "...", "userMessage": "..."}

Chunks from the transport can split a line (or a multi-byte character) anywhere,
so bytes are decoded incrementally and the trailing partial line is held back until
the next newline or end of stream.
"""
from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from bizbrain.app.services.errors import AnalysisStreamError

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No data received from analysis"
FALLBACK_ERROR = "Analysis failed"


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResultEvent:
    data: Any


@dataclass(frozen=True)
class ErrorEvent:
    error: Optional[str] = None
    details: Optional[str] = None
    user_message: Optional[str] = None

    @property
    def message(self) -> str:
        return self.error or self.details or FALLBACK_ERROR

    @property
    def display_message(self) -> str:
        return self.user_message or self.message

    def to_exception(self) -> AnalysisStreamError:
        return AnalysisStreamError(self.message, self.display_message)


StreamEvent = Union[ProgressEvent, ResultEvent, ErrorEvent]


def parse_event(line: str) -> Optional[StreamEvent]:
    """One line -> one event. Blank, unparsable or unknown lines give None."""
    text = line.strip()
    if not text:
        return None
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Skipping unparsable stream line: %.120s", text)
        return None
    if not isinstance(obj, dict):
        return None

    kind = obj.get("type")
    # progress without a stage and result without data carry nothing
    if kind == "progress" and obj.get("stage"):
        return ProgressEvent(stage=str(obj["stage"]), raw=obj)
    if kind == "result" and obj.get("data"):
        return ResultEvent(data=obj["data"])
    if kind == "error":
        return ErrorEvent(
            error=obj.get("error"),
            details=obj.get("details"),
            user_message=obj.get("userMessage"),
        )
    logger.debug("Ignoring stream envelope of type %r", kind)
    return None


class NDJSONDecoder:
    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._finished = False

    def feed(self, chunk: Union[bytes, str]) -> List[StreamEvent]:
        if self._finished:
            raise RuntimeError("decoder already finished")
        if isinstance(chunk, bytes):
            self._buffer += self._decoder.decode(chunk)
        else:
            self._buffer += chunk

        *lines, self._buffer = self._buffer.split("\n")
        return [e for e in map(parse_event, lines) if e is not None]

    def finish(self) -> List[StreamEvent]:
        """Flush the decoder and parse whatever is left as one last candidate line."""
        if self._finished:
            return []
        self._finished = True
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        return [e for e in map(parse_event, rest.split("\n")) if e is not None]


def consume_analysis_stream(
    chunks: Iterable[Union[bytes, str]],
    on_progress: Optional[Callable[[ProgressEvent], None]] = None,
) -> Any:
    """
    Drain the stream and return the ``result`` payload.

    An ``error`` envelope raises immediately; a stream that ends without a result
    raises ``AnalysisStreamError("No data received from analysis")``.
    """
    decoder = NDJSONDecoder()
    result: Optional[ResultEvent] = None

    def handle(events: List[StreamEvent]) -> None:
        nonlocal result
        for event in events:
            if isinstance(event, ProgressEvent):
                logger.info("Analysis stage: %s", event.stage)
                if on_progress is not None:
                    on_progress(event)
            elif isinstance(event, ResultEvent):
                result = event
            else:
                logger.error("Analysis stream reported error: %s", event.message)
                raise event.to_exception()

    for chunk in chunks:
        if chunk:
            handle(decoder.feed(chunk))
    handle(decoder.finish())

    if result is None:
        raise AnalysisStreamError(NO_DATA_MESSAGE)
    return result.data
