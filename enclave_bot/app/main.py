#!/usr/bin/env python3
"""
Main FastAPI application for the Enclave SMS backend.
"""

from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import parse_qsl
from xml.sax.saxutils import escape

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from ..data.database import create_tables, make_engine, make_session_factory
from ..data.repository import Repository
from ..nlu.intent_model import QueryClassifier
from ..nlu.llm_router import LLMIntentClassifier
from ..nlu.rules import Router
from ..retrievers.action import ActionRetriever
from ..retrievers.content import ContentRetriever
from ..retrievers.convo import ConversationRetriever
from ..retrievers.enclave import EnclaveReferenceRetriever
from ..schemas.io_models import SessionView, TurnRequest, TurnResponse
from ..utils.errors import SessionLoadFailure, SignatureInvalid
from ..utils.logger import get_logger
from ..utils.security import mask_pii, verify_signature
from .config import Config
from .controller import SessionHandler
from .dispatch import Dispatcher
from .generate import GenerationClient, LanguageModelService
from .outbound import TwilioTransport, normalize_e164
from .retrieval import HybridRetriever
from .session import HistoryLog, SessionStore, connect_redis

logger = get_logger()


def build_handler() -> SessionHandler:
    """Construct every service from Config and wire them into one handler."""
    redis_client = connect_redis()
    store = SessionStore(redis_client)
    history = HistoryLog(redis_client)

    engine = make_engine()
    create_tables(engine)
    repository = Repository(make_session_factory(engine))

    client = GenerationClient() if Config.GEMINI_API_KEY else None
    llm = LanguageModelService(client)

    retrievers = [
        ContentRetriever(HybridRetriever()),
        ConversationRetriever(history),
        EnclaveReferenceRetriever(),
        ActionRetriever(repository),
    ]
    return SessionHandler(
        store=store,
        history=history,
        router=Router(fallback=LLMIntentClassifier(llm)),
        query_classifier=QueryClassifier(),
        retrievers=retrievers,
        dispatcher=Dispatcher(repository, TwilioTransport()),
        repository=repository,
    )


def twiml(messages) -> str:
    body = "".join(f"<Message>{escape(m)}</Message>" for m in messages)
    return f'<?xml version="1.0" encoding="UTF-8"?><Response>{body}</Response>'


def create_app(handler: Optional[SessionHandler] = None, validate_signature: Optional[bool] = None,
               auth_token: Optional[str] = None, debug_routes: Optional[bool] = None) -> FastAPI:
    validate = Config.VALIDATE_TWILIO_SIGNATURE if validate_signature is None else validate_signature
    debug = Config.ENABLE_DEBUG_ROUTES if debug_routes is None else debug_routes
    token = auth_token or Config.TWILIO_AUTH_TOKEN

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.handler = handler or build_handler()
        Config.debug_print()
        yield

    app = FastAPI(
        title="Enclave SMS API",
        description="SMS assistant for org questions, announcements and polls",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _callback_url(request: Request) -> str:
        if Config.PUBLIC_BASE_URL:
            return Config.PUBLIC_BASE_URL.rstrip("/") + request.url.path
        return str(request.url)

    @app.post("/sms")
    async def sms_webhook(request: Request):
        """Twilio inbound webhook; replies with TwiML, one <Message> per chunk."""
        raw = (await request.body()).decode("utf-8")
        params = dict(parse_qsl(raw, keep_blank_values=True))

        if validate:
            try:
                verify_signature(token, request.headers.get("X-Twilio-Signature", ""), _callback_url(request), params)
            except SignatureInvalid as e:
                logger.warning(f"[SMS] rejected webhook: {e}")
                raise HTTPException(status_code=401, detail="Invalid signature")

        sender = params.get("From")
        if not sender:
            raise HTTPException(status_code=400, detail="Missing From")
        sender = normalize_e164(sender)
        result = await request.app.state.handler.handle_turn(sender, params.get("Body", ""))
        logger.info(f"[SMS] replied to {mask_pii(sender)} with {len(result.messages)} message(s)")
        return Response(content=twiml(result.messages), media_type="application/xml")

    if debug:
        logger.warning("[API] debug routes /turn and /session are enabled without auth")

        @app.post("/turn", response_model=TurnResponse)
        async def turn(body: TurnRequest, request: Request):
            """Run one turn from JSON, for local testing."""
            result = await request.app.state.handler.handle_turn(body.sender, body.text)
            return TurnResponse(sender=body.sender, messages=result.messages, mode=result.mode)

        @app.get("/session/{sender}", response_model=SessionView)
        async def get_session(sender: str, request: Request):
            try:
                state = await request.app.state.handler.store.get(sender)
            except SessionLoadFailure as e:
                raise HTTPException(status_code=503, detail=f"Session store unavailable: {e}")
            return SessionView(sender=sender, state=state)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
