import importlib
import inspect
import re
from typing import Any, Optional, Protocol, Union, Mapping

from .errors import ExtractionError
from .models import Record

RATE_LIMIT_RE = re.compile(r"\b429\b|quota|resource_exhausted", re.IGNORECASE)


class ExtractionClient(Protocol):
    def extract(self, payload: bytes, media_type: str,
                timeout: Optional[float] = None) -> Union[Record, Mapping[str, Any]]:
        """Turn a document into a Record (or the service's JSON for one)."""
        ...


def is_rate_limit(err: BaseException) -> bool:
    """True when `err` means the service throttled us rather than failed."""
    if isinstance(err, ExtractionError):
        return err.rate_limited
    if getattr(err, "rate_limited", False):
        return True
    for attr in ("status_code", "code", "status"):
        if str(getattr(err, attr, "")) == "429":
            return True
    return RATE_LIMIT_RE.search(str(err)) is not None


def load_client(spec: str) -> ExtractionClient:
    """
    Import a client from "package.module:attr". If attr is a class or
    factory function it is called with no arguments.
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Client must look like 'package.module:factory', got {spec!r}")
    try:
        obj = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Cannot load extraction client {spec!r}: {e}")
    if inspect.isclass(obj) or (not hasattr(obj, "extract") and callable(obj)):
        obj = obj()
    if not callable(getattr(obj, "extract", None)):
        raise ValueError(f"{spec!r} does not provide an extract(payload, media_type) method")
    return obj


def as_record(result) -> Record:
    if isinstance(result, Record):
        return result
    if isinstance(result, Mapping):
        return Record.from_payload(result)
    raise ExtractionError(f"Schema mismatch: client returned {type(result).__name__}")
