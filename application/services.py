"""Application Services - Business use cases"""
import logging
from uuid import UUID
from typing import Any, Callable, Dict, List, Optional, Sequence

from domain.auth import Principal, User, UserInDB
from domain.entities import Booking, Payment, Studio
from domain.enums import Action, BookingStatus, PaymentStatus, Role
from domain.exceptions import (
    BookingNotFound, DuplicateEmail, Forbidden, GatewayError, InvalidInput,
    InvalidStatus, InvalidTransition, PaymentAlreadyCompleted, PaymentInProgress, PaymentNotFound,
    StudioHasBookings, StudioNotFound, Unauthorized
)
from domain.gateways import PaymentGateway
from domain.policies import ensure_can_perform
from domain.pricing import calculate_total, DEFAULT_CURRENCY
from domain.repositories import UnitOfWork
from domain.slots import ensure_no_conflicts, validate_slots
from domain.value_objects import normalize_phone_number
from infrastructure.security import CredentialService

logger = logging.getLogger(__name__)

UnitOfWorkFactory = Callable[[], UnitOfWork]

SIGNUP_ROLES = (Role.ARTIST, Role.STUDIO_MANAGER)


class AuthService:
    """Service for signup, login and token resolution"""

    def __init__(self, uow_factory: UnitOfWorkFactory, credentials: CredentialService):
        self.uow_factory = uow_factory
        self.credentials = credentials

    async def signup(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
        phone: Optional[str] = None,
        role: Role = Role.ARTIST
    ) -> User:
        """Register a new artist or studio manager"""
        if not email or not password:
            raise InvalidInput("Email and password are required")
        if role not in SIGNUP_ROLES:
            raise Forbidden("Cannot sign up with this role")

        async with self.uow_factory() as uow:
            if await uow.users.find_by_email(email):
                raise DuplicateEmail("User already exists")
            user = UserInDB(
                email=email,
                full_name=full_name,
                phone=phone,
                role=role,
                hashed_password=self.credentials.hash_password(password)
            )
            await uow.users.save(user)

        logger.info("User %s signed up as %s", user.user_id, role.value)
        return User(**user.model_dump(exclude={"hashed_password"}))

    async def authenticate(self, email: str, password: str) -> Optional[UserInDB]:
        async with self.uow_factory() as uow:
            user = await uow.users.find_by_email(email)
        if not user or not self.credentials.verify_password(password, user.hashed_password):
            return None
        return user

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """Return an access token and the user it was issued to"""
        if not email or not password:
            raise InvalidInput("Email and password are required")
        user = await self.authenticate(email, password)
        if user is None:
            raise Unauthorized("Incorrect email or password")
        if user.disabled:
            raise Forbidden("Inactive user")
        return {"access_token": self.issue_token(user), "token_type": "bearer", "user": user}

    def issue_token(self, user: User) -> str:
        claims = {
            "sub": str(user.user_id),
            "id": str(user.user_id),
            "email": user.email,
            "role": user.role.value,
        }
        return self.credentials.create_access_token(claims)

    async def resolve_principal(self, token: str) -> Principal:
        """Turn a bearer token into the caller it identifies"""
        payload = self.credentials.decode_access_token(token)
        user_id = payload.get("id") or payload.get("sub")
        if not user_id or not payload.get("role"):
            raise Unauthorized("Invalid token payload")
        try:
            user_uuid = UUID(str(user_id))
        except ValueError:
            raise Unauthorized("Invalid token payload")

        async with self.uow_factory() as uow:
            user = await uow.users.find_by_id(user_uuid)
        if user is None:
            raise Unauthorized()
        if user.disabled:
            raise Forbidden("Inactive user")
        # The stored role wins over the one in the token
        return Principal(user_id=user.user_id, email=user.email, role=user.role)

    async def get_user(self, user_id: UUID) -> Optional[User]:
        async with self.uow_factory() as uow:
            user = await uow.users.find_by_id(user_id)
        if user is None:
            return None
        return User(**user.model_dump(exclude={"hashed_password"}))

    async def ensure_admin(self, email: str, password: str) -> User:
        """Create the bootstrap administrator if it does not exist yet"""
        async with self.uow_factory() as uow:
            existing = await uow.users.find_by_email(email)
            if existing:
                return existing
            admin = UserInDB(
                email=email,
                full_name="Administrator",
                role=Role.ADMIN,
                hashed_password=self.credentials.hash_password(password)
            )
            await uow.users.save(admin)
        logger.info("Bootstrap admin %s created", email)
        return admin


class StudioService:
    """Service for Studio listings"""

    def __init__(self, uow_factory: UnitOfWorkFactory, credentials: CredentialService):
        self.uow_factory = uow_factory
        self.credentials = credentials

    async def list_studios(self) -> List[Studio]:
        async with self.uow_factory() as uow:
            return await uow.studios.find_all()

    async def get_studio(self, studio_id: UUID) -> Studio:
        async with self.uow_factory() as uow:
            studio = await uow.studios.find_by_id(studio_id)
        if studio is None:
            raise StudioNotFound()
        return studio

    async def create_studio(self, principal: Principal, data: Dict[str, Any]) -> Studio:
        """Create a studio owned by the caller (admins may pick the owner)"""
        ensure_can_perform(principal.role, Action.MANAGE_STUDIO)
        data = dict(data)
        owner_id = data.pop("owner_id", None)
        if not (principal.is_admin and owner_id):
            owner_id = principal.user_id
        fields = {k: v for k, v in data.items() if v is not None}

        async with self.uow_factory() as uow:
            if await uow.users.find_by_id(owner_id) is None:
                raise InvalidInput("Owner does not exist")
            studio = Studio(owner_id=owner_id, **fields)
            await uow.studios.save(studio)

        logger.info("Studio %s created for owner %s", studio.studio_id, owner_id)
        return studio

    async def update_studio(self, principal: Principal, studio_id: UUID, changes: Dict[str, Any]) -> Studio:
        ensure_can_perform(principal.role, Action.MANAGE_STUDIO)
        async with self.uow_factory() as uow:
            studio = await uow.studios.find_by_id(studio_id)
            if studio is None:
                raise StudioNotFound()
            if not principal.is_admin and studio.owner_id != principal.user_id:
                raise Forbidden("Forbidden: Not your studio")
            changes = {k: v for k, v in changes.items() if k != "owner_id" or principal.is_admin}
            studio.apply_changes(changes)
            Studio.model_validate(studio.model_dump())
            await uow.studios.update(studio)
        return studio

    async def delete_studio(self, principal: Principal, studio_id: UUID) -> None:
        ensure_can_perform(principal.role, Action.MANAGE_STUDIO)
        async with self.uow_factory() as uow:
            studio = await uow.studios.find_by_id(studio_id)
            if studio is None:
                raise StudioNotFound()
            if not principal.is_admin and studio.owner_id != principal.user_id:
                raise Forbidden("Forbidden: Not your studio")
            if await uow.bookings.find_all(studio_ids=[studio_id]):
                raise StudioHasBookings()
            await uow.studios.delete(studio_id)
        logger.info("Studio %s deleted by %s", studio_id, principal.user_id)

    async def create_studio_manager(
        self,
        principal: Principal,
        email: str,
        password: str,
        full_name: str,
        phone: Optional[str] = None,
        studio_id: Optional[UUID] = None
    ) -> User:
        """Create a manager account and optionally hand it a studio, atomically"""
        ensure_can_perform(principal.role, Action.CREATE_STUDIO_MANAGER)
        if not email or not password or not full_name:
            raise InvalidInput("Full name, email, and password are required")

        async with self.uow_factory() as uow:
            if await uow.users.find_by_email(email):
                raise DuplicateEmail()
            studio = None
            if studio_id is not None:
                studio = await uow.studios.find_by_id(studio_id)
                if studio is None:
                    raise StudioNotFound()

            manager = UserInDB(
                email=email,
                full_name=full_name,
                phone=phone,
                role=Role.STUDIO_MANAGER,
                hashed_password=self.credentials.hash_password(password)
            )
            await uow.users.save(manager)
            if studio is not None:
                studio.apply_changes({"owner_id": manager.user_id})
                await uow.studios.update(studio)

        logger.info("Studio manager %s created by %s", manager.user_id, principal.user_id)
        return User(**manager.model_dump(exclude={"hashed_password"}))


class BookingService:
    """Service for Booking business use cases"""

    def __init__(self, uow_factory: UnitOfWorkFactory, default_currency: str = DEFAULT_CURRENCY):
        self.uow_factory = uow_factory
        self.default_currency = default_currency

    async def create_booking(
        self,
        principal: Principal,
        studio_id: UUID,
        slots: Sequence[Any],
        currency: Optional[str] = None
    ) -> Dict[str, Any]:
        """Validate, price and persist a booking with its pending payment.

        The studio row is locked and the conflict check runs inside the same
        unit of work as the inserts, so overlapping requests cannot both win.
        """
        ensure_can_perform(principal.role, Action.CREATE_BOOKING)
        validated = validate_slots(slots)

        async with self.uow_factory() as uow:
            studio = await uow.studios.find_by_id_for_update(studio_id)
            if studio is None:
                raise StudioNotFound()

            window_start = min(s.start_time for s in validated)
            window_end = max(s.end_time for s in validated)
            existing = await uow.bookings.find_slots_in_window(studio_id, window_start, window_end)
            ensure_no_conflicts(validated, [s.as_time_slot() for s in existing])

            total = calculate_total(
                studio.price_per_hour,
                [s.duration_minutes for s in validated],
                currency=currency,
                default_currency=self.default_currency
            )
            booking = Booking.create(
                artist_id=principal.user_id,
                studio_id=studio_id,
                slots=validated,
                total_amount=total
            )
            payment = Payment.create_pending(booking.booking_id, total)
            booking.payment_id = payment.payment_id

            await uow.bookings.save(booking)
            await uow.payments.save(payment)

        logger.info(
            "Booking %s created on studio %s: %d slot(s), %s %s",
            booking.booking_id, studio_id, len(validated), total.display_amount(), total.currency
        )
        return {"booking": booking, "payment": payment}

    async def list_bookings(self, principal: Principal) -> List[Booking]:
        """Bookings visible to the caller, most recent start first"""
        ensure_can_perform(principal.role, Action.LIST_BOOKINGS)
        async with self.uow_factory() as uow:
            if principal.role == Role.ARTIST:
                return await uow.bookings.find_all(artist_id=principal.user_id)
            if principal.role == Role.STUDIO_MANAGER:
                studios = await uow.studios.find_by_owner(principal.user_id)
                return await uow.bookings.find_all(studio_ids=[s.studio_id for s in studios])
            return await uow.bookings.find_all()

    async def get_booking(self, principal: Principal, booking_id: UUID) -> Dict[str, Any]:
        """Booking with its studio and payment, if the caller may see it"""
        ensure_can_perform(principal.role, Action.VIEW_BOOKING)
        async with self.uow_factory() as uow:
            booking = await uow.bookings.find_by_id(booking_id)
            if booking is None:
                raise BookingNotFound()
            studio = await uow.studios.find_by_id(booking.studio_id)
            payment = await uow.payments.find_by_booking_id(booking_id)

        if not self._has_access(principal, booking, studio):
            raise Forbidden("Forbidden: You don't have access")
        return {"booking": booking, "studio": studio, "payment": payment}

    async def update_status(self, principal: Principal, booking_id: UUID, status: Any) -> Booking:
        """Explicit status change by an admin or the studio's manager"""
        ensure_can_perform(principal.role, Action.UPDATE_BOOKING_STATUS)
        try:
            new_status = BookingStatus(status)
        except ValueError:
            raise InvalidStatus("Invalid status")

        async with self.uow_factory() as uow:
            booking = await uow.bookings.find_by_id(booking_id)
            if booking is None:
                raise BookingNotFound()
            if not principal.is_admin:
                studio = await uow.studios.find_by_id(booking.studio_id)
                if studio is None or studio.owner_id != principal.user_id:
                    raise Forbidden("Forbidden: Cannot update this booking")
            previous = booking.status
            if booking.change_status(new_status):
                await uow.bookings.update(booking)
                logger.info(
                    "Booking %s status %s -> %s by %s",
                    booking_id, previous.value, new_status.value, principal.user_id
                )
        return booking

    async def delete_booking(self, principal: Principal, booking_id: UUID) -> None:
        """Delete a booking with its slots and payment"""
        ensure_can_perform(principal.role, Action.DELETE_BOOKING)
        async with self.uow_factory() as uow:
            booking = await uow.bookings.find_by_id(booking_id)
            if booking is None:
                raise BookingNotFound()
            payment = await uow.payments.find_by_booking_id(booking_id)
            if payment is not None:
                await uow.payments.delete(payment.payment_id)
            await uow.bookings.delete(booking_id)
        logger.info("Booking %s deleted by %s", booking_id, principal.user_id)

    @staticmethod
    def _has_access(principal: Principal, booking: Booking, studio: Optional[Studio]) -> bool:
        if principal.role == Role.ADMIN:
            return True
        if principal.role == Role.ARTIST:
            return booking.artist_id == principal.user_id
        if principal.role == Role.STUDIO_MANAGER:
            return studio is not None and studio.owner_id == principal.user_id
        return False


class PaymentService:
    """Service for payment initiation and callback reconciliation"""

    # Diagnostic codes returned to the gateway in the callback acknowledgement
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    NOT_FOUND = "payment_not_found"
    INVALID_PAYLOAD = "invalid_payload"

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        gateway: PaymentGateway,
        transaction_desc: str = "Studio Booking"
    ):
        self.uow_factory = uow_factory
        self.gateway = gateway
        self.transaction_desc = transaction_desc

    async def initiate_payment(self, principal: Principal, booking_id: UUID, phone_number: str) -> Payment:
        """Send an STK push for the booking's payment and mark it processing"""
        ensure_can_perform(principal.role, Action.INITIATE_PAYMENT)
        phone = normalize_phone_number(phone_number)

        async with self.uow_factory() as uow:
            booking = await uow.bookings.find_by_id(booking_id)
            if booking is None:
                raise BookingNotFound()
            if not principal.is_admin and booking.artist_id != principal.user_id:
                raise Forbidden("Forbidden: Not your booking")
            if booking.status == BookingStatus.CANCELLED:
                raise InvalidTransition("Cannot pay for a cancelled booking")
            payment = await uow.payments.find_by_booking_id(booking_id)
            if payment is None:
                raise PaymentNotFound()
            if payment.status == PaymentStatus.COMPLETED:
                raise PaymentAlreadyCompleted()
            if payment.status == PaymentStatus.PROCESSING:
                # A second push would replace the reference the first callback matches on
                raise PaymentInProgress()
            studio = await uow.studios.find_by_id(booking.studio_id)
            if studio is None:
                raise StudioNotFound()
            route = studio.payment_route()

        # No transaction is held open across the network call
        try:
            result = await self.gateway.submit_push(
                amount=payment.total_amount.gateway_amount(),
                phone_number=phone,
                channel_number=route.channel_number,
                channel_mode=route.channel_mode,
                account_reference=str(booking_id),
                transaction_desc=self.transaction_desc
            )
        except GatewayError:
            logger.exception("STK push failed for booking %s", booking_id)
            raise

        if not result.checkout_request_id:
            logger.error("STK push for booking %s returned no checkout reference: %s", booking_id, result.raw_response)
            raise GatewayError()

        async with self.uow_factory() as uow:
            payment = await uow.payments.find_by_id(payment.payment_id)
            if payment is None:
                raise PaymentNotFound()
            payment.mark_processing(result.checkout_request_id, result.raw_response, phone, route)
            await uow.payments.update(payment)

        logger.info(
            "STK push accepted for booking %s, payment %s, checkout %s",
            booking_id, payment.payment_id, result.checkout_request_id
        )
        return payment

    async def handle_callback(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Reconcile a gateway callback. Never raises for unknown references."""
        parsed = parse_stk_callback(payload)
        if parsed is None:
            logger.warning("Ignoring malformed M-PESA callback: %s", payload)
            return {"code": self.INVALID_PAYLOAD}

        checkout_id = parsed["checkout_request_id"]
        result_code = parsed["result_code"]

        async with self.uow_factory() as uow:
            payment = await uow.payments.find_by_provider_reference(checkout_id)
            if payment is None:
                logger.warning("Payment not found for callback %s (result %s)", checkout_id, result_code)
                return {"code": self.NOT_FOUND, "checkout_request_id": checkout_id}

            if not payment.apply_callback(result_code, payload, parsed["receipt_number"]):
                logger.warning(
                    "Duplicate callback %s for payment %s already %s",
                    checkout_id, payment.payment_id, payment.status.value
                )
                return {"code": self.DUPLICATE, "payment_id": payment.payment_id, "status": payment.status}

            await uow.payments.update(payment)

            booking_confirmed = False
            if payment.status == PaymentStatus.COMPLETED and payment.booking_id:
                booking = await uow.bookings.find_by_id(payment.booking_id)
                if booking is None:
                    logger.warning("Payment %s completed but booking %s is gone", payment.payment_id, payment.booking_id)
                elif booking.confirm_from_payment():
                    await uow.bookings.update(booking)
                    booking_confirmed = True
                else:
                    logger.warning(
                        "Payment %s completed but booking %s is %s",
                        payment.payment_id, booking.booking_id, booking.status.value
                    )

        logger.info(
            "Callback %s: payment %s -> %s (%s)",
            checkout_id, payment.payment_id, payment.status.value, parsed["result_desc"]
        )
        return {
            "code": self.PROCESSED,
            "payment_id": payment.payment_id,
            "status": payment.status,
            "booking_confirmed": booking_confirmed,
        }

    async def get_payment_status(self, principal: Principal, payment_id: UUID) -> Dict[str, Any]:
        ensure_can_perform(principal.role, Action.VIEW_PAYMENT)
        async with self.uow_factory() as uow:
            payment = await uow.payments.find_by_id(payment_id)
            if payment is None:
                raise PaymentNotFound()
            studio = None
            if payment.booking_id:
                booking = await uow.bookings.find_by_id(payment.booking_id)
                if booking is not None:
                    studio = await uow.studios.find_by_id(booking.studio_id)
        return {"payment": payment, "studio": studio}

    async def reconcile_bookings(self, principal: Principal) -> List[UUID]:
        """Confirm pending bookings whose payment already completed"""
        ensure_can_perform(principal.role, Action.RECONCILE_PAYMENTS)
        confirmed: List[UUID] = []
        async with self.uow_factory() as uow:
            for payment in await uow.payments.find_by_status(PaymentStatus.COMPLETED):
                if not payment.booking_id:
                    continue
                booking = await uow.bookings.find_by_id(payment.booking_id)
                if booking is not None and booking.confirm_from_payment():
                    await uow.bookings.update(booking)
                    confirmed.append(booking.booking_id)
        if confirmed:
            logger.info("Reconciliation confirmed %d booking(s)", len(confirmed))
        return confirmed


def _metadata_value(metadata: Any, name: str) -> Optional[Any]:
    if not isinstance(metadata, dict):
        return None
    for item in metadata.get("Item") or []:
        if isinstance(item, dict) and item.get("Name") == name:
            return item.get("Value")
    return None


def parse_stk_callback(payload: Any) -> Optional[Dict[str, Any]]:
    """Pull the fields we reconcile on out of a Daraja STK callback body"""
    if not isinstance(payload, dict):
        return None
    body = (payload.get("Body") or {}).get("stkCallback") if isinstance(payload.get("Body"), dict) else None
    if not isinstance(body, dict):
        return None
    checkout_id = body.get("CheckoutRequestID")
    try:
        result_code = int(body.get("ResultCode"))
    except (TypeError, ValueError):
        return None
    if not checkout_id:
        return None

    receipt = _metadata_value(body.get("CallbackMetadata"), "MpesaReceiptNumber")
    return {
        "checkout_request_id": str(checkout_id),
        "result_code": result_code,
        "result_desc": body.get("ResultDesc"),
        "receipt_number": str(receipt) if receipt is not None else None,
    }
