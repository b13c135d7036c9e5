"""BGP Element Stream API."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from config import IntervalConfig, StreamConfig, build_engine, load_stream_config
from engines import RetrievalEngine
from errors import (
    BGPStreamError,
    ConstructionError,
    InvalidFilterError,
    RecordRetrievalError,
    StartFailedError,
)
from stream import Stream

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"
DEFAULT_LIMIT = 100
MAX_LIMIT = 10000

app = FastAPI(title="BGP Element Stream", description="Decoded BGP elements from bgpstream", version=VERSION)

backend_dir = Path(__file__).parent
project_dir = backend_dir.parent
config_path = project_dir / "config" / "stream.yml"

stream_config: StreamConfig
try:
    stream_config = load_stream_config(config_path)
except Exception as e:
    logger.warning("Could not load stream config: %s", e)
    stream_config = StreamConfig()


def _engine() -> RetrievalEngine:
    return build_engine(stream_config)


class ElementQuery(BaseModel):
    filters: list[str] = Field(default_factory=list)
    intervals: list[IntervalConfig] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, ge=1, le=MAX_LIMIT)


@app.post("/api/elements")
def query_elements(query: ElementQuery):
    limit = query.limit or stream_config.limit or DEFAULT_LIMIT
    elements: list[dict] = []
    errors: list[dict] = []
    complete = False
    failed = False
    # Query terms replace the configured ones; an empty query uses config/stream.yml
    filters = query.filters or stream_config.filters
    intervals = query.intervals or stream_config.intervals

    try:
        engine = _engine()
        with Stream(engine) as stream:
            stream.configure(StreamConfig(filters=filters, intervals=intervals))
            iterator = stream.start()
            while len(elements) < limit:
                item = next(iterator, None)
                if item is None:
                    complete = not failed
                    break
                if isinstance(item, BGPStreamError):
                    failed = failed or isinstance(item, RecordRetrievalError)
                    errors.append({"type": type(item).__name__, "message": item.message})
                    continue
                elements.append(item.model_dump(mode="json"))
    except InvalidFilterError as e:
        raise HTTPException(400, str(e))
    except (ConstructionError, StartFailedError) as e:
        logger.error("Stream failed: %s", e)
        raise HTTPException(502, f"Stream failed: {e}")
    except ValueError as e:
        raise HTTPException(500, f"Stream misconfigured: {e}")

    return {"elements": elements, "errors": errors, "complete": complete}


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": VERSION, "engine": stream_config.engine}
