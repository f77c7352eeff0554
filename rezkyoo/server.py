"""FastAPI server for restaurant searches, batch status and telephony webhooks."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import AsyncOpenAI
from pydantic import ValidationError

from rezkyoo.config import Config, get_config, setup_logging
from rezkyoo.exceptions import (
    BatchNotFoundError,
    LocationNotFoundError,
    RezkyooError,
    TelephonyNotConfiguredError,
)
from rezkyoo.models import CallEvent, SearchPreferences, SearchQuery
from rezkyoo.services.batch_coordinator import BatchCoordinator
from rezkyoo.services.call_machine import CallContext, CallStateMachine
from rezkyoo.services.classifier import MenuNavigator, OutcomeClassifier
from rezkyoo.services.dnc import DoNotCallRegistry
from rezkyoo.services.places_service import PlacesService
from rezkyoo.services.preferences import PreferenceParser
from rezkyoo.services.scheduling import AsyncioScheduler, KeyedLocks
from rezkyoo.services.storage import (
    InMemoryDocumentStore,
    ReservationStore,
    SQLiteDocumentStore,
)
from rezkyoo.services.transcription import TranscriptionPipeline
from rezkyoo.services.twilio_service import TwilioService, parse_twilio_event

logger = logging.getLogger(__name__)

TWILIO_WEBHOOKS = ("status", "amd", "recording")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan manager."""
    config = get_config()
    logger.info(f"Starting RezKyoo server on {config.server_host}:{config.server_port}")
    logger.info(f"Public domain: {config.public_domain or 'NOT CONFIGURED'}")

    # The agents SDK reads the key from the environment
    if config.openai_api_key and "OPENAI_API_KEY" not in os.environ:
        os.environ["OPENAI_API_KEY"] = config.openai_api_key
        logger.info("OpenAI API key loaded into environment")

    if config.database_path:
        documents = SQLiteDocumentStore(config.database_path)
    else:
        logger.warning("DATABASE_PATH not set - batches and calls are kept in memory")
        documents = InMemoryDocumentStore()

    store = ReservationStore(documents)
    dnc = DoNotCallRegistry(documents)
    openai_client = AsyncOpenAI(api_key=config.openai_api_key)
    twilio = TwilioService(config)
    places = PlacesService(config)
    locks = KeyedLocks()

    call_machine = CallStateMachine(
        store=store,
        telephony=twilio,
        transcriber=TranscriptionPipeline(config, openai_client),
        classifier=OutcomeClassifier(config.classifier_model),
        navigator=MenuNavigator(config.classifier_model),
        dnc=dnc,
        scheduler=AsyncioScheduler(),
        context=CallContext.from_config(config),
        locks=locks,
    )

    _app.state.config = config
    _app.state.call_machine = call_machine
    _app.state.twilio_service = twilio
    _app.state.preference_parser = PreferenceParser(openai_client, config.parser_model)
    _app.state.coordinator = BatchCoordinator(
        config=config,
        store=store,
        places=places,
        telephony=twilio,
        calls=call_machine,
        dnc=dnc,
        locks=locks,
    )
    logger.info("Components initialized")

    yield

    await places.aclose()
    logger.info("Shutting down RezKyoo server")


app = FastAPI(
    title="RezKyoo API",
    description="Finds an open restaurant table by calling restaurants in parallel",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _from_state(request: Request, name: str) -> Any:
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=503, detail="Server not initialized yet")
    return component


def get_settings(request: Request) -> Config:
    """Dependency to get the configuration from app state."""
    return _from_state(request, "config")


def get_coordinator(request: Request) -> BatchCoordinator:
    """Dependency to get the batch coordinator from app state.

    Raises:
        HTTPException: If the server is not initialized
    """
    return _from_state(request, "coordinator")


def get_call_machine(request: Request) -> CallStateMachine:
    """Dependency to get the call state machine from app state."""
    return _from_state(request, "call_machine")


def get_twilio_service(request: Request) -> TwilioService:
    """Dependency to get the Twilio service from app state."""
    return _from_state(request, "twilio_service")


def get_preference_parser(request: Request) -> PreferenceParser:
    """Dependency to get the preference parser from app state."""
    return _from_state(request, "preference_parser")


def validation_message(error: ValidationError) -> str:
    """First validation problem as a short client-facing message."""
    first = error.errors()[0]
    message = first["msg"].removeprefix("Value error, ")
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid {location}: {message}" if location else message


def error_response(error: RezkyooError) -> JSONResponse:
    """Map a pipeline error to an HTTP response."""
    if isinstance(error, LocationNotFoundError):
        status_code = 400
    elif isinstance(error, TelephonyNotConfiguredError):
        status_code = 503
    else:
        status_code = 404
    return JSONResponse(status_code=status_code, content={"message": str(error)})


def parse_search_query(data: dict[str, Any]) -> SearchQuery:
    """Build a SearchQuery from a search request body.

    Raises:
        ValueError: If a required field is missing
        ValidationError: If a field is invalid
    """
    for field in ("location", "party_size", "date"):
        if not data.get(field):
            raise ValueError(f"Missing {field}")

    craving = data.get("craving") or data.get("preferences") or {}
    if isinstance(craving, str):
        craving = {"notes": craving}
    elif not isinstance(craving, dict):
        raise ValueError("Invalid craving: expected text or an object")

    preferences = SearchPreferences(
        cuisine=data.get("cuisine"),
        notes=craving.get("notes") or craving.get("text"),
        chips=craving.get("chips") or [],
        parsed=craving.get("parsed"),
    )
    return SearchQuery(
        location=data["location"],
        party_size=data["party_size"],
        date=data["date"],
        time=data.get("time") or None,
        intent=data.get("intent") or "specific_time",
        preferences=preferences,
        timezone=data.get("timezone"),
        max_calls=data.get("max_calls"),
    )


async def process_event(call_machine: CallStateMachine, event: CallEvent) -> None:
    """Run a webhook event through the call state machine, isolating failures."""
    try:
        await call_machine.handle_event(event)
    except Exception:
        logger.exception(f"Error processing {event.type.value} for {event.call_id or event.call_control_id}")


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {"status": "healthy", "service": "rezkyoo-api"}


@app.post("/nlp/parse_query")
async def parse_query(
    request: Request,
    parser: PreferenceParser = Depends(get_preference_parser),
):
    """Parse a free-text dining mood into structured preferences.

    Request body:
        {"text": "cozy ramen, nothing too loud"}

    Returns:
        {"ok": true, "parsed": {...}, "chips": [...]}
    """
    data = await request.json()
    text = (data or {}).get("text")
    if not text or not str(text).strip():
        return JSONResponse(status_code=400, content={"ok": False, "error": "Missing text"})

    try:
        parsed, chips = await parser.parse(str(text))
    except Exception:
        logger.exception("Preference parsing failed")
        return JSONResponse(status_code=500, content={"ok": False, "error": "NLP parse failed"})

    return {"ok": True, "parsed": parsed.model_dump(mode="json"), "chips": chips}


@app.post("/restaurants/search_and_call")
async def search_and_call(
    request: Request,
    coordinator: BatchCoordinator = Depends(get_coordinator),
):
    """Start a search and call the first page of restaurants.

    Request body:
        {
            "location": "Mission District, San Francisco",
            "party_size": 4,
            "date": "2025-03-07",
            "time": "19:30",
            "intent": "specific_time",
            "cuisine": "thai",
            "craving": {"notes": "...", "chips": [...], "parsed": {...}}
        }

    Returns:
        {"batchId": "...", "restaurants": [...], "mapUrl": ..., "query": {...}, "hasMore": bool}
    """
    try:
        data = await request.json()
        query = parse_search_query(data or {})
        page = await coordinator.start_batch(query)

    except ValidationError as e:
        return JSONResponse(status_code=400, content={"message": validation_message(e)})
    except RezkyooError as e:
        return error_response(e)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"message": str(e)})
    except Exception:
        logger.exception("Error starting search")
        return JSONResponse(status_code=500, content={"message": "Internal error starting search"})

    return page.to_response()


@app.post("/restaurants/search_more")
async def search_more(
    request: Request,
    coordinator: BatchCoordinator = Depends(get_coordinator),
):
    """Call the next page of restaurants for an existing batch.

    Request body:
        {"batchId": "batch_..."}  (``original_batch_id`` is accepted too)
    """
    try:
        data = await request.json() or {}
        batch_id = data.get("batchId") or data.get("original_batch_id")
        if not batch_id:
            return JSONResponse(status_code=400, content={"message": "Missing batchId"})

        page = await coordinator.continue_batch(batch_id)

    except BatchNotFoundError:
        return JSONResponse(status_code=404, content={"message": "Original batch not found"})
    except RezkyooError as e:
        return error_response(e)
    except Exception:
        logger.exception("Error continuing search")
        return JSONResponse(
            status_code=500, content={"message": "Internal error finding more restaurants"}
        )

    return page.to_response()


@app.get("/status/{batch_id}")
async def batch_status(
    batch_id: str,
    coordinator: BatchCoordinator = Depends(get_coordinator),
):
    """Poll a batch: {"ok": true, "status": "calling"|"completed", "items": [...]}."""
    try:
        progress = await coordinator.get_status(batch_id)
    except BatchNotFoundError:
        return JSONResponse(status_code=404, content={"message": "Batch not found"})
    return progress.to_response()


@app.post("/webhooks/twilio/hold")
async def twilio_hold(twilio: TwilioService = Depends(get_twilio_service)):
    """TwiML that keeps an answered call open until the next command."""
    return Response(content=twilio.hold_twiml(), media_type="text/xml")


@app.post("/webhooks/twilio/{kind}")
async def twilio_webhook(
    kind: str,
    request: Request,
    background_tasks: BackgroundTasks,
    config: Config = Depends(get_settings),
    twilio: TwilioService = Depends(get_twilio_service),
    call_machine: CallStateMachine = Depends(get_call_machine),
):
    """Handle Twilio status, answering-machine detection and recording callbacks.

    Acknowledges immediately; the event is processed in the background.
    """
    if kind not in TWILIO_WEBHOOKS:
        logger.warning(f"Unknown Twilio webhook: {kind}")
        return Response(content="OK", media_type="text/plain")

    form = dict(await request.form())
    params = dict(request.query_params)

    if config.verify_twilio_signature:
        url = f"https://{config.public_domain}{request.url.path}"
        if request.url.query:
            url = f"{url}?{request.url.query}"
        if not twilio.verify_signature(url, form, request.headers.get("X-Twilio-Signature")):
            logger.warning(f"Rejected Twilio {kind} webhook with invalid signature")
            return Response(content="Forbidden", media_type="text/plain", status_code=403)

    if form.get("ErrorCode"):
        logger.error(f"Twilio error {form.get('ErrorCode')}: {form.get('ErrorMessage')}")

    event = parse_twilio_event(kind, form, params)
    if event is None:
        logger.debug(f"Nothing to do for Twilio {kind} callback {form.get('CallSid')}")
    else:
        background_tasks.add_task(process_event, call_machine, event)

    return Response(content="OK", media_type="text/plain")


@app.post("/webhooks/telephony")
async def telephony_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    call_machine: CallStateMachine = Depends(get_call_machine),
):
    """Handle a provider-neutral call event.

    Request body:
        {"type": "call.hangup", "call_control_id": "...", "call_id": "..."}
    """
    try:
        event = CallEvent.model_validate(await request.json())
    except (ValidationError, ValueError) as e:
        logger.warning(f"Ignoring malformed telephony event: {e}")
        return {"ok": True, "ignored": True}

    if not event.call_id and not event.call_control_id:
        logger.warning(f"Ignoring {event.type.value} event without a call id")
        return {"ok": True, "ignored": True}

    background_tasks.add_task(process_event, call_machine, event)
    return {"ok": True}


def run_server():
    """Run the FastAPI server using uvicorn.

    This is the main entry point for the server.
    """
    setup_logging()
    config = get_config()

    uvicorn.run(
        "rezkyoo.server:app",
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run_server()
