from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from config import Settings, load_settings
from errors import ReservationError
from log import configure_logging
from messaging import ChatCommandHandler, parse_webhook, verify_signature
from models import BookingCreate, BookingRead, DayAvailability
from notifications import LineMessagingClient, build_dispatcher, build_line_client
from service import ReservationService, normalize_date
from slots import SlotCatalog
from store import ReservationStore


async def reservation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = exc if isinstance(exc, ReservationError) else ReservationError(str(exc), 500)
    return JSONResponse(status_code=error.status_code, content={"detail": error.message})


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    errors = jsonable_encoder(exc.errors()) if isinstance(exc, RequestValidationError) else []
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": errors})


def get_service(request: Request) -> ReservationService:
    return request.app.state.service


def get_chat_handler(request: Request) -> ChatCommandHandler:
    return request.app.state.chat


router = APIRouter(prefix="/api")


# --- Endpoint 1: GET /api/slots ---
@router.get("/slots", response_model=DayAvailability)
async def get_slots(
    date: str = Query(..., description="YYYY-MM-DD"),
    service: ReservationService = Depends(get_service),
):
    slots = await service.get_availability(date)
    return DayAvailability(date=normalize_date(date), slots=slots)


# --- Endpoint 2: POST /api/book ---
@router.post("/book", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def book_slot(
    booking_data: BookingCreate,
    service: ReservationService = Depends(get_service),
):
    booking = await service.reserve_slot(
        user_id=booking_data.user_id,
        name=booking_data.name,
        date=booking_data.date,
        time=booking_data.time,
        note=booking_data.note,
    )
    return BookingRead.model_validate(booking)


# --- Endpoint 3: GET /api/my-bookings ---
@router.get("/my-bookings", response_model=List[BookingRead])
async def my_bookings(
    user_id: str = Query(..., alias="userId"),
    service: ReservationService = Depends(get_service),
):
    bookings = await service.list_my_bookings(user_id)
    return [BookingRead.model_validate(b) for b in bookings]


def create_app(
    settings: Optional[Settings] = None,
    line_client: Optional[LineMessagingClient] = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        catalog = SlotCatalog.from_settings(settings)
        store = ReservationStore(settings.database_url)
        await store.open()
        dispatcher = None
        try:
            client = line_client or build_line_client(settings)
            dispatcher = build_dispatcher(client)

            async def reply(reply_token: str, text: str) -> None:
                if client is None:
                    logger.info("Reply ({}): {!r}", reply_token, text)
                    return
                await client.reply_text(reply_token, text)

            service = ReservationService(catalog, store, dispatcher)
            app.state.service = service
            app.state.chat = ChatCommandHandler(service, reply)
            logger.info("Queue backend ready: {} slots, capacity {}", len(catalog), settings.slot_capacity)
            yield
        finally:
            if dispatcher is not None:
                await dispatcher.aclose()
            await store.close()

    app = FastAPI(title="Slot Queue Booking System", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ReservationError, reservation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.include_router(router)

    # --- LINE webhook: needs the raw body for the signature check ---
    @app.post("/webhook")
    async def line_webhook(
        request: Request,
        x_line_signature: Optional[str] = Header(None),
        chat: ChatCommandHandler = Depends(get_chat_handler),
    ):
        body = await request.body()
        verify_signature(settings.line_channel_secret, body, x_line_signature)
        handled = await chat.handle(parse_webhook(body))
        return {"handled": handled}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = app.state.settings
    uvicorn.run("main:app", host=_settings.api_host, port=_settings.api_port)
