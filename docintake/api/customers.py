"""API endpoints for customers and their intakes."""

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from docintake.api.deps import get_context, http_error
from docintake.core.errors import IntakeError, NotFoundError
from docintake.core.logging import get_logger
from docintake.core.schemas_intake import Customer, Intake
from docintake.services.context import IntakeContext

logger = get_logger(__name__)

router = APIRouter()


class CustomerCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    notes: str = ""


class CustomerNotesUpdate(BaseModel):
    notes: str


class IntakeCreate(BaseModel):
    tax_year: str = Field(..., pattern=r"^\d{4}$", description="Tax year being prepared, e.g. '2024'")
    notes: str | None = None


@router.get("/customers", response_model=list[Customer])
async def list_customers(ctx: IntakeContext = Depends(get_context)) -> list[Customer]:
    """List customers, newest first."""
    return ctx.repository.list_customers()


@router.post("/customers", response_model=Customer, status_code=201)
async def create_customer(body: CustomerCreate, ctx: IntakeContext = Depends(get_context)) -> Customer:
    customer = ctx.repository.create_customer(body.name.strip(), body.email.strip(), body.notes)
    logger.info(f"Created customer {customer.id}")
    return customer


@router.get("/customers/{customer_id}", response_model=Customer)
async def get_customer(customer_id: str, ctx: IntakeContext = Depends(get_context)) -> Customer:
    customer = ctx.repository.get_customer(customer_id)
    if customer is None:
        raise http_error(NotFoundError("Customer", customer_id))
    return customer


@router.patch("/customers/{customer_id}/notes", response_model=Customer)
async def update_customer_notes(
    customer_id: str,
    body: CustomerNotesUpdate,
    ctx: IntakeContext = Depends(get_context),
) -> Customer:
    """Overwrite a customer's notes by hand."""
    customer = ctx.repository.update_customer_notes(customer_id, body.notes)
    if customer is None:
        raise http_error(NotFoundError("Customer", customer_id))
    return customer


@router.delete("/customers/{customer_id}", status_code=204)
async def delete_customer(customer_id: str, ctx: IntakeContext = Depends(get_context)) -> Response:
    """Delete a customer with its intakes, documents, messages, details and memories."""
    if not ctx.repository.delete_customer(customer_id):
        raise http_error(NotFoundError("Customer", customer_id))
    return Response(status_code=204)


@router.get("/customers/{customer_id}/intakes", response_model=list[Intake])
async def list_intakes(customer_id: str, ctx: IntakeContext = Depends(get_context)) -> list[Intake]:
    if ctx.repository.get_customer(customer_id) is None:
        raise http_error(NotFoundError("Customer", customer_id))
    return ctx.repository.list_intakes(customer_id)


@router.post("/customers/{customer_id}/intakes", response_model=Intake, status_code=201)
async def create_intake(
    customer_id: str,
    body: IntakeCreate,
    ctx: IntakeContext = Depends(get_context),
) -> Intake:
    """Open an intake. Every intake starts awaiting its prior-year return."""
    try:
        if ctx.repository.get_customer(customer_id) is None:
            raise NotFoundError("Customer", customer_id)
        intake = ctx.repository.create_intake(customer_id, body.tax_year, body.notes)
        logger.info(f"Created intake {intake.id} for customer {customer_id} ({body.tax_year})")
        return intake
    except IntakeError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.error(f"Error creating intake: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e
