import logging
from contextlib import asynccontextmanager
from uuid import UUID
from typing import List

from fastapi import FastAPI, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    # Auth
    SignupRequest, LoginRequest, LoginResponse, Token, UserResponse,
    # Studios
    CreateStudioRequest, UpdateStudioRequest, StudioResponse, CreateStudioManagerRequest,
    # Bookings
    CreateBookingRequest, UpdateBookingStatusRequest, BookingResponse, BookingSlotResponse,
    BookingCreatedResponse, BookingDetailResponse,
    # Payments
    InitiatePaymentRequest, InitiatePaymentResponse, PaymentResponse, PaymentStatusResponse,
    CallbackAcknowledgement, ReconcileResponse,
    display_amount
)
from api.dependencies import (
    get_current_user, require_permission, get_auth_service, get_studio_service,
    get_booking_service, get_payment_service
)
from api.errors import register_error_handlers
from application.services import AuthService, StudioService, BookingService, PaymentService
from domain.auth import Principal
from domain.enums import Action, BookingStatus, PaymentStatus, Role
from infrastructure.config import Settings, configure_logging
from infrastructure.container import build_container

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = getattr(app.state, "container", None)
    owned = container is None
    if owned:
        settings = Settings.from_env()
        configure_logging(settings.LOG_LEVEL)
        container = build_container(settings)
        app.state.container = container
    await container.bootstrap()
    logger.info("%s started", container.settings.PROJECT_NAME)
    yield
    if owned:
        await container.close()


app = FastAPI(
    title="Studio Booking API",
    description="Studio bookings with M-PESA STK Push payments",
    version="1.0.0",
    lifespan=lifespan
)
register_error_handlers(app)

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/booking-status", tags=["Enum Reference"])
async def get_booking_statuses():
    """Get all BookingStatus enum values"""
    return {
        "values": [item.value for item in BookingStatus],
        "description": "Booking status values: pending, confirmed, completed, cancelled"
    }

@app.get("/api/enums/payment-status", tags=["Enum Reference"])
async def get_payment_statuses():
    """Get all PaymentStatus enum values"""
    return {
        "values": [item.value for item in PaymentStatus],
        "description": "Payment status values: pending, processing, completed, failed"
    }

@app.get("/api/enums/roles", tags=["Enum Reference"])
async def get_roles():
    """Get all Role enum values"""
    return {
        "values": [item.value for item in Role],
        "description": "Roles: artist, studio_manager, admin"
    }

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    service: AuthService = Depends(get_auth_service)
):
    """OAuth2 password flow; the username field carries the email"""
    result = await service.login(form_data.username, form_data.password)
    return {"access_token": result["access_token"], "token_type": result["token_type"]}

@app.post("/api/auth/signup", response_model=UserResponse, status_code=201, tags=["Auth"])
async def signup(request: SignupRequest, service: AuthService = Depends(get_auth_service)):
    """Register an artist or studio manager"""
    user = await service.signup(
        email=request.email,
        password=request.password,
        full_name=request.full_name,
        phone=request.phone,
        role=request.role
    )
    return _user_to_response(user)

@app.post("/api/auth/login", response_model=LoginResponse, tags=["Auth"])
async def login(request: LoginRequest, service: AuthService = Depends(get_auth_service)):
    """Login with email and password"""
    result = await service.login(request.email, request.password)
    return LoginResponse(
        access_token=result["access_token"],
        token_type=result["token_type"],
        user=_user_to_response(result["user"])
    )

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(
    current_user: Principal = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    user = await service.get_user(current_user.user_id)
    return _user_to_response(user)

# ============================================================================
# STUDIO ENDPOINTS
# ============================================================================

@app.get("/api/studios", response_model=List[StudioResponse], tags=["Studios"])
async def list_studios(service: StudioService = Depends(get_studio_service)):
    """List all studios"""
    studios = await service.list_studios()
    return [_studio_to_response(s) for s in studios]

@app.get("/api/studios/{studio_id}", response_model=StudioResponse, tags=["Studios"])
async def get_studio(studio_id: UUID, service: StudioService = Depends(get_studio_service)):
    """Get studio by ID"""
    return _studio_to_response(await service.get_studio(studio_id))

@app.post("/api/studios", response_model=StudioResponse, status_code=201, tags=["Studios"])
async def create_studio(
    request: CreateStudioRequest,
    service: StudioService = Depends(get_studio_service),
    current_user: Principal = Depends(require_permission(Action.MANAGE_STUDIO))
):
    """Create a studio owned by the caller"""
    studio = await service.create_studio(current_user, request.model_dump())
    return _studio_to_response(studio)

@app.put("/api/studios/{studio_id}", response_model=StudioResponse, tags=["Studios"])
async def update_studio(
    studio_id: UUID,
    request: UpdateStudioRequest,
    service: StudioService = Depends(get_studio_service),
    current_user: Principal = Depends(require_permission(Action.MANAGE_STUDIO))
):
    """Update a studio (owner or admin)"""
    studio = await service.update_studio(current_user, studio_id, request.model_dump(exclude_unset=True))
    return _studio_to_response(studio)

@app.delete("/api/studios/{studio_id}", status_code=204, tags=["Studios"])
async def delete_studio(
    studio_id: UUID,
    service: StudioService = Depends(get_studio_service),
    current_user: Principal = Depends(require_permission(Action.MANAGE_STUDIO))
):
    """Delete a studio without bookings (owner or admin)"""
    await service.delete_studio(current_user, studio_id)

@app.post("/api/studios/managers", response_model=UserResponse, status_code=201, tags=["Studios"])
async def create_studio_manager(
    request: CreateStudioManagerRequest,
    service: StudioService = Depends(get_studio_service),
    current_user: Principal = Depends(require_permission(Action.CREATE_STUDIO_MANAGER))
):
    """Create a studio manager account, optionally handing it a studio"""
    manager = await service.create_studio_manager(
        current_user,
        email=request.email,
        password=request.password,
        full_name=request.full_name,
        phone=request.phone,
        studio_id=request.studio_id
    )
    return _user_to_response(manager)

# ============================================================================
# BOOKING ENDPOINTS
# ============================================================================

@app.post("/api/bookings", response_model=BookingCreatedResponse, status_code=201, tags=["Bookings"])
async def create_booking(
    request: CreateBookingRequest,
    service: BookingService = Depends(get_booking_service),
    current_user: Principal = Depends(require_permission(Action.CREATE_BOOKING))
):
    """Create a booking with its pending payment"""
    result = await service.create_booking(
        current_user,
        studio_id=request.studio_id,
        slots=[s.model_dump() for s in request.slots],
        currency=request.currency
    )
    return BookingCreatedResponse(
        booking=_booking_to_response(result["booking"]),
        payment=_payment_to_response(result["payment"])
    )

@app.get("/api/bookings", response_model=List[BookingResponse], tags=["Bookings"])
async def list_bookings(
    service: BookingService = Depends(get_booking_service),
    current_user: Principal = Depends(get_current_user)
):
    """Bookings visible to the caller, most recent first"""
    bookings = await service.list_bookings(current_user)
    return [_booking_to_response(b) for b in bookings]

@app.post("/api/bookings/pay", response_model=InitiatePaymentResponse, tags=["Bookings"])
async def pay_for_booking(
    request: InitiatePaymentRequest,
    service: PaymentService = Depends(get_payment_service),
    current_user: Principal = Depends(require_permission(Action.INITIATE_PAYMENT))
):
    """Start the M-PESA STK push for a booking"""
    return await _initiate_payment(request, service, current_user)

@app.get("/api/bookings/{booking_id}", response_model=BookingDetailResponse, tags=["Bookings"])
async def get_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user: Principal = Depends(get_current_user)
):
    """Get booking by ID with its studio and payment"""
    result = await service.get_booking(current_user, booking_id)
    return BookingDetailResponse(
        booking=_booking_to_response(result["booking"]),
        studio=_studio_to_response(result["studio"]) if result["studio"] else None,
        payment=_payment_to_response(result["payment"]) if result["payment"] else None
    )

@app.patch("/api/bookings/{booking_id}/status", response_model=BookingResponse, tags=["Bookings"])
async def update_booking_status(
    booking_id: UUID,
    request: UpdateBookingStatusRequest,
    service: BookingService = Depends(get_booking_service),
    current_user: Principal = Depends(require_permission(Action.UPDATE_BOOKING_STATUS))
):
    """Change booking status (studio manager or admin)"""
    booking = await service.update_status(current_user, booking_id, request.status)
    return _booking_to_response(booking)

@app.delete("/api/bookings/{booking_id}", status_code=204, tags=["Bookings"])
async def delete_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user: Principal = Depends(require_permission(Action.DELETE_BOOKING))
):
    """Delete a booking with its slots and payment (admin)"""
    await service.delete_booking(current_user, booking_id)

# ============================================================================
# PAYMENT ENDPOINTS
# ============================================================================

@app.post("/api/payments/initiate", response_model=InitiatePaymentResponse, tags=["Payments"])
async def initiate_payment(
    request: InitiatePaymentRequest,
    service: PaymentService = Depends(get_payment_service),
    current_user: Principal = Depends(require_permission(Action.INITIATE_PAYMENT))
):
    """Start the M-PESA STK push for a booking"""
    return await _initiate_payment(request, service, current_user)

@app.post("/api/payments/callback", response_model=CallbackAcknowledgement, tags=["Payments"])
async def mpesa_callback(request: Request, service: PaymentService = Depends(get_payment_service)):
    """Safaricom result callback. Always acknowledged with HTTP 200."""
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("M-PESA callback with a non-JSON body")
        return CallbackAcknowledgement(code=PaymentService.INVALID_PAYLOAD)

    try:
        outcome = await service.handle_callback(payload)
    except Exception:
        # The gateway only needs an acknowledgement; the failure is logged for follow-up
        logger.exception("Failed to process M-PESA callback")
        return CallbackAcknowledgement(code="internal_error")

    return CallbackAcknowledgement(code=outcome["code"])

@app.get("/api/payments/{payment_id}/status", response_model=PaymentStatusResponse, tags=["Payments"])
async def get_payment_status(
    payment_id: UUID,
    service: PaymentService = Depends(get_payment_service),
    current_user: Principal = Depends(get_current_user)
):
    """Get payment status"""
    result = await service.get_payment_status(current_user, payment_id)
    payment, studio = result["payment"], result["studio"]
    return PaymentStatusResponse(
        payment_id=payment.payment_id,
        booking_id=payment.booking_id,
        status=payment.status,
        amount=display_amount(payment.amount),
        currency=payment.currency,
        provider_reference=payment.provider_reference,
        receipt_number=payment.receipt_number,
        channel_number=payment.channel_number,
        channel_mode=payment.channel_mode,
        payment_type=studio.payment_type if studio else None,
        paybill_number=studio.paybill_number if studio else None,
        till_number=studio.till_number if studio else None
    )

@app.post("/api/payments/reconcile", response_model=ReconcileResponse, tags=["Payments"])
async def reconcile_payments(
    service: PaymentService = Depends(get_payment_service),
    current_user: Principal = Depends(require_permission(Action.RECONCILE_PAYMENTS))
):
    """Confirm pending bookings whose payment already completed (admin)"""
    booking_ids = await service.reconcile_bookings(current_user)
    return ReconcileResponse(confirmed=len(booking_ids), booking_ids=booking_ids)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

async def _initiate_payment(request: InitiatePaymentRequest, service: PaymentService, current_user: Principal):
    payment = await service.initiate_payment(current_user, request.booking_id, request.phone_number)
    return InitiatePaymentResponse(
        message="STK push sent. Complete the payment on your phone.",
        checkout_request_id=payment.provider_reference,
        payment=_payment_to_response(payment)
    )

def _user_to_response(user) -> UserResponse:
    """Convert User entity to UserResponse"""
    return UserResponse(
        user_id=user.user_id,
        email=user.email,
        full_name=user.full_name,
        phone=user.phone,
        role=user.role,
        disabled=user.disabled,
        created_at=user.created_at
    )

def _studio_to_response(studio) -> StudioResponse:
    """Convert Studio entity to StudioResponse"""
    return StudioResponse(
        studio_id=studio.studio_id,
        owner_id=studio.owner_id,
        name=studio.name,
        description=studio.description,
        location=studio.location,
        capacity=studio.capacity,
        price_per_hour=display_amount(studio.price_per_hour),
        amenities=studio.amenities,
        payment_type=studio.payment_type,
        paybill_number=studio.paybill_number,
        till_number=studio.till_number,
        created_at=studio.created_at,
        modified_at=studio.modified_at
    )

def _booking_to_response(booking) -> BookingResponse:
    """Convert Booking entity to BookingResponse"""
    return BookingResponse(
        booking_id=booking.booking_id,
        artist_id=booking.artist_id,
        studio_id=booking.studio_id,
        payment_id=booking.payment_id,
        start_time=booking.start_time,
        end_time=booking.end_time,
        duration_minutes=booking.duration_minutes,
        amount=display_amount(booking.amount),
        currency=booking.currency,
        status=booking.status,
        slots=[
            BookingSlotResponse(slot_id=s.slot_id, start_time=s.start_time, end_time=s.end_time)
            for s in booking.slots
        ],
        created_at=booking.created_at,
        modified_at=booking.modified_at,
        version=booking.version
    )

def _payment_to_response(payment) -> PaymentResponse:
    """Convert Payment entity to PaymentResponse"""
    return PaymentResponse(
        payment_id=payment.payment_id,
        booking_id=payment.booking_id,
        provider=payment.provider,
        amount=display_amount(payment.amount),
        currency=payment.currency,
        status=payment.status,
        provider_reference=payment.provider_reference,
        phone_number=payment.phone_number,
        channel_number=payment.channel_number,
        channel_mode=payment.channel_mode,
        receipt_number=payment.receipt_number,
        created_at=payment.created_at,
        modified_at=payment.modified_at
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
