import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import ValidationError

from models import WebHookPayload
from settings import Settings, settings
from state import AppState
from timers import LoopScheduler, Scheduler

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)-5s %(name)-7s %(message)s")
logger = logging.getLogger("sonarr")

XML_TYPE = "application/xml; charset=UTF-8"
JSON_TYPE = "application/json; charset=UTF-8"


def create_app(config: Settings, scheduler: Optional[Scheduler] = None) -> FastAPI:
    """Build the app around a fresh `AppState`.

    Tests pass a `VirtualScheduler`; in production timers run on the
    server's event loop.
    """

    state = AppState(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state.load()
        await state.update_host_config()
        state.init_feed(scheduler or LoopScheduler())
        yield
        await state.close()

    app = FastAPI(title="Sonarr Feed", lifespan=lifespan)
    app.state.app_state = state

    async def process_event(request: Request):
        # Sonarr only needs to know we got it; problems are ours to log.
        try:
            body = await request.json()
        except ValueError as e:
            logger.warning(f"Ignoring webhook with unreadable body: {e}")
            return PlainTextResponse("ok")

        if not isinstance(body, dict) or not body.get("eventType"):
            logger.warning("Ignoring webhook without eventType")
            return PlainTextResponse("ok")

        try:
            payload = WebHookPayload.model_validate(body)
        except ValidationError as e:
            logger.warning(f"Ignoring {body.get('eventType')} webhook: {e}")
            return PlainTextResponse("ok")

        logger.info(f"New event: {payload.event_type.value}")
        state.event_manager.receive(payload)
        return PlainTextResponse("ok")

    app.add_api_route("/sonarr", process_event, methods=["POST", "PUT"])

    if config.feed_rss:
        @app.get("/rss")
        async def rss():
            return Response(state.feed.rss2(), media_type=XML_TYPE)

    if config.feed_atom:
        @app.get("/atom")
        async def atom():
            return Response(state.feed.atom1(), media_type=XML_TYPE)

    if config.feed_json:
        @app.get("/json")
        async def json_feed():
            return Response(state.feed.json1(), media_type=JSON_TYPE)

    @app.get("/health")
    async def health():
        return {
            "ok": True,
            "events": len(state.history),
            "feedItems": len(state.feed),
            "delayedHealthEvents": len(state.event_manager.delayed),
        }

    @app.get("/events")
    async def events(limit: int = Query(50)):
        limit = max(1, min(limit, 1000))
        records = state.history.records[-limit:]
        return [e.model_dump(mode="json", by_alias=True, exclude_none=True) for e in reversed(records)]

    @app.get("/event/{event_id}")
    async def event(event_id: str):
        found = state.history.get(event_id)
        if found is None:
            raise HTTPException(status_code=404, detail=f"Unknown event {event_id}")
        return found.model_dump(mode="json", by_alias=True, exclude_none=True)

    return app


app = create_app(settings)


def run() -> None:
    uvicorn.run("main:app", host="0.0.0.0", port=18989)


if __name__ == "__main__":
    run()
