import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    # Reservation
    CreateReservationRequest, RescheduleReservationRequest, ReservationResponse,
    CreateReservationResponse, SeriesResponse, CancelSeriesResponse,
    # Auth
    Token, UserResponse
)

from api.dependencies import get_current_active_user, require_admin, fake_users_db, get_user
from infrastructure.config import get_settings
from infrastructure.logging_config import setup_logging
from infrastructure.scheduler import JobStatus, SweepScheduler
from infrastructure.security import verify_password, create_access_token, ACCESS_TOKEN_EXPIRE_MINUTES
from domain.auth import User

from application.expiry import ExpiredCheck, ExpirySweepService, SweepResult
from application.services import ReservationService
from infrastructure.repositories.in_memory_repositories import (
    InMemoryReservationRepository, InMemoryCustomerRepository, InMemoryCourtRepository
)
from domain import calendar
from domain.enums import PaymentMethod, ReservationStatus
from domain.exceptions import ConflictError, NotFoundError
from domain.repositories import ReservationFilter

logger = logging.getLogger(__name__)

settings = get_settings()

# Initialize repositories
if settings.database_url:
    from infrastructure.database import create_db_engine, create_session_factory
    from infrastructure.repositories.sqlalchemy_repositories import (
        SqlAlchemyReservationRepository, SqlAlchemyCustomerRepository, SqlAlchemyCourtRepository
    )

    session_factory = create_session_factory(create_db_engine(settings.database_url))
    reservation_repo = SqlAlchemyReservationRepository(session_factory)
    customer_repo = SqlAlchemyCustomerRepository(session_factory)
    court_repo = SqlAlchemyCourtRepository(session_factory)
else:
    reservation_repo = InMemoryReservationRepository()
    customer_repo = InMemoryCustomerRepository()
    court_repo = InMemoryCourtRepository()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)
    logger.info(
        "Starting Court Reservation API (storage: %s)",
        "sql" if settings.database_url else "memory"
    )
    scheduler: SweepScheduler = app.state.sweep_scheduler
    if settings.sweep_enabled:
        scheduler.start()
    yield
    await scheduler.stop()


app = FastAPI(
    title="Court Reservation API",
    description="Court reservations with weekly recurrence, conflict detection and automatic expiry",
    version="1.0.0",
    lifespan=lifespan
)

app.state.sweep_scheduler = SweepScheduler(
    ExpirySweepService(reservation_repo, customer_repo, court_repo),
    cron_expression=settings.sweep_cron,
    timezone_name=settings.sweep_timezone
)

# Dependency injection
def get_reservation_service() -> ReservationService:
    return ReservationService(
        reservation_repo,
        customer_repo,
        court_repo,
        max_recurrence_months=settings.max_recurrence_months,
        reschedule_applies_duration=settings.reschedule_applies_duration
    )

def get_sweep_service() -> ExpirySweepService:
    return ExpirySweepService(reservation_repo, customer_repo, court_repo)

def get_sweep_scheduler(request: Request) -> SweepScheduler:
    return request.app.state.sweep_scheduler

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/health", tags=["Health"])
@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/reservation-status", tags=["Enum Reference"])
async def get_reservation_statuses():
    """Get all ReservationStatus enum values"""
    return {
        "values": [item.name for item in ReservationStatus],
        "description": "Reservation status values: ACTIVE, CANCELLED, COMPLETED"
    }

@app.get("/api/enums/payment-method", tags=["Enum Reference"])
async def get_payment_methods():
    """Get all PaymentMethod enum values"""
    return {
        "values": [item.name for item in PaymentMethod],
        "description": "Payment method values: CASH, PIX, CREDIT_CARD, DEBIT_CARD"
    }

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = get_user(fake_users_db, form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user.username, "role": user.role.value}, expires_delta=access_token_expires
    )
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user

# ============================================================================
# RESERVATION ENDPOINTS
# ============================================================================

@app.post("/reservas", response_model=CreateReservationResponse, status_code=201, tags=["Reservations"])
async def create_reservation(
    request: CreateReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Create a single reservation or a weekly recurring series"""
    try:
        result = await service.create_reservation(
            customer_id=request.customer_id,
            court_id=request.court_id,
            reservation_date=request.date,
            hour=request.hour,
            duration_minutes=request.duration_minutes,
            notes=request.notes,
            recurring=request.recurring,
            weekday=request.weekday,
            recurrence_end=request.recurrence_end,
            payment_method=request.payment_method,
            paid_percentage=request.paid_percentage
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if request.recurring:
        message = f"Recurring reservation created successfully. {result.total_created} reservations created."
    else:
        message = "Reservation created successfully"
    return CreateReservationResponse(
        reservation=_reservation_to_response(result.parent),
        children=[_reservation_to_response(r) for r in result.children],
        total_created=result.total_created,
        message=message
    )

@app.get("/reservas", response_model=List[ReservationResponse], tags=["Reservations"])
async def list_reservations(
    status: Optional[ReservationStatus] = None,
    data_inicio: Optional[str] = None,
    data_fim: Optional[str] = None,
    recorrente: Optional[bool] = None,
    apenas_pais: bool = False,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """List reservations ordered by date and hour"""
    # Query-string dates tolerate surrounding blanks; the body fields do not
    try:
        criteria = ReservationFilter(
            status=status,
            date_from=calendar.parse_calendar_date(data_inicio.strip(), "data_inicio") if data_inicio else None,
            date_to=calendar.parse_calendar_date(data_fim.strip(), "data_fim") if data_fim else None,
            recurring=recorrente,
            parents_only=apenas_pais
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    reservations = await service.list_reservations(criteria)
    return [_reservation_to_response(r) for r in reservations]

@app.get("/reservas/{reservation_id}", response_model=ReservationResponse, tags=["Reservations"])
async def get_reservation(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get reservation by ID"""
    reservation = await service.get_reservation(reservation_id)
    if not reservation:
        raise HTTPException(status_code=404, detail="Reservation not found")
    return _reservation_to_response(reservation)

@app.get("/reservas/{reservation_id}/serie", response_model=SeriesResponse, tags=["Reservations"])
async def get_series(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get the recurring series a reservation belongs to"""
    try:
        series = await service.get_series(reservation_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SeriesResponse(
        parent=_reservation_to_response(series.parent),
        children=[_reservation_to_response(r) for r in series.children],
        total=1 + len(series.children)
    )

@app.put("/reservas/{reservation_id}/reagendar", response_model=ReservationResponse, tags=["Reservations"])
async def reschedule_reservation(
    reservation_id: int,
    request: RescheduleReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Move a reservation to another date and hour"""
    try:
        reservation = await service.reschedule_reservation(
            reservation_id=reservation_id,
            new_date=request.new_date,
            new_hour=request.new_hour,
            notes=request.notes
        )
        return _reservation_to_response(reservation)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.put("/reservas/{reservation_id}/cancelar", response_model=ReservationResponse, tags=["Reservations"])
async def cancel_reservation(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Cancel an active reservation"""
    try:
        reservation = await service.cancel_reservation(reservation_id)
        return _reservation_to_response(reservation)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.put("/reservas/{reservation_id}/concluir", response_model=ReservationResponse, tags=["Reservations"])
async def complete_reservation(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Mark an active reservation as completed"""
    try:
        reservation = await service.complete_reservation(reservation_id)
        return _reservation_to_response(reservation)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.put("/reservas/{reservation_id}/cancelar-recorencia", response_model=CancelSeriesResponse, tags=["Reservations"])
async def cancel_series(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Cancel every active reservation of a recurring series (id of the parent)"""
    try:
        result = await service.cancel_series(reservation_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CancelSeriesResponse(
        parent_id=result.parent_id,
        cancelled_count=result.cancelled_count,
        cancelled_ids=result.cancelled_ids,
        message=f"Recurring series cancelled successfully. {result.cancelled_count} reservations cancelled."
    )

# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.post("/admin/reservas/processar-vencidas", response_model=SweepResult, tags=["Admin"])
async def process_expired_reservations(
    service: ExpirySweepService = Depends(get_sweep_service),
    current_user: User = Depends(require_admin)
):
    """Complete every active reservation whose date has passed"""
    try:
        return await service.sweep_expired()
    except Exception as e:
        logger.exception("Manual expiry sweep failed")
        raise HTTPException(status_code=500, detail=f"Internal server error: {e}")

@app.get("/admin/reservas/verificar-vencidas", response_model=ExpiredCheck, tags=["Admin"])
async def check_expired_reservations(
    service: ExpirySweepService = Depends(get_sweep_service),
    current_user: User = Depends(require_admin)
):
    """List overdue active reservations without changing them"""
    return await service.check_expired()

@app.get("/admin/jobs/reservas/status", response_model=JobStatus, tags=["Admin"])
async def get_job_status(
    scheduler: SweepScheduler = Depends(get_sweep_scheduler),
    current_user: User = Depends(require_admin)
):
    """Status of the automatic expiry job"""
    return scheduler.status()

@app.post("/admin/jobs/reservas/executar", tags=["Admin"])
async def run_job(
    scheduler: SweepScheduler = Depends(get_sweep_scheduler),
    current_user: User = Depends(require_admin)
):
    """Run the expiry job once, outside its schedule"""
    try:
        result = await scheduler.run_manual()
    except Exception as e:
        logger.exception("Manual job execution failed")
        raise HTTPException(status_code=500, detail=f"Job execution failed: {e}")
    return {"message": "Job executed successfully", "processed_count": result.processed_count}

@app.post("/admin/jobs/reservas/iniciar", response_model=JobStatus, tags=["Admin"])
async def start_job(
    scheduler: SweepScheduler = Depends(get_sweep_scheduler),
    current_user: User = Depends(require_admin)
):
    """Arm the daily expiry job"""
    scheduler.start()
    return scheduler.status()

@app.post("/admin/jobs/reservas/parar", response_model=JobStatus, tags=["Admin"])
async def stop_job(
    scheduler: SweepScheduler = Depends(get_sweep_scheduler),
    current_user: User = Depends(require_admin)
):
    """Disarm the daily expiry job"""
    await scheduler.stop()
    return scheduler.status()

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _reservation_to_response(reservation) -> ReservationResponse:
    """Convert Reservation entity to ReservationResponse"""
    return ReservationResponse(
        reservation_id=reservation.reservation_id,
        customer_id=reservation.customer_id,
        court_id=reservation.court_id,
        parent_id=reservation.parent_id,
        reservation_date=reservation.reservation_date,
        hour=reservation.hour,
        duration_minutes=reservation.duration_minutes,
        price_cents=reservation.price_cents,
        payment_method=reservation.payment_method.value if reservation.payment_method else None,
        paid_percentage=reservation.paid_percentage,
        amount_paid_cents=reservation.amount_paid_cents,
        payment_status=reservation.payment_status.value,
        status=reservation.status.value,
        is_recurring=reservation.is_recurring,
        weekday=reservation.weekday,
        recurrence_end=reservation.recurrence_end,
        notes=reservation.notes,
        created_at=reservation.created_at,
        updated_at=reservation.updated_at,
        version=reservation.version
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
