"""
Delivery API Routes

Identity (seller / driver) is passed explicitly in the request; who is
allowed to act as whom is decided by the auth layer in front of this API.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from delivery_market.api.dependencies import (
    get_claim_service,
    get_completion_service,
    get_delivery_service,
)
from delivery_market.core.exceptions import DeliveryNotFoundError, ValidationError
from delivery_market.core.logging import get_logger
from delivery_market.core.timeouts import run_with_timeout
from delivery_market.db.models.delivery import FeedbackAuthor, PaymentType, ProofType
from delivery_market.db.models.wallet import TransactionType
from delivery_market.domain.services.claim_service import ClaimService, DriverInfo
from delivery_market.domain.services.completion_service import DeliveryCompletionService
from delivery_market.domain.services.delivery_service import (
    DeliveryOrder,
    DeliveryService,
    ItemInfo,
    RouteInfo,
    SellerInfo,
)
from delivery_market.domain.services.fee_calculator import estimate_distance_km, fee_breakdown
from delivery_market.domain.snapshots import Coordinate, DeliverySnapshot

logger = get_logger(__name__)

router = APIRouter()


# ==================== Schemas ====================


class CoordinateIn(BaseModel):
    lat: float = Field(allow_inf_nan=False)
    lng: float = Field(allow_inf_nan=False)

    def to_coordinate(self) -> Coordinate:
        return Coordinate(lat=self.lat, lng=self.lng)


def _coordinate(value: Optional[CoordinateIn]) -> Optional[Coordinate]:
    return value.to_coordinate() if value is not None else None


class ItemIn(BaseModel):
    name: str
    weight_kg: float = Field(allow_inf_nan=False)
    size: str = "small"
    fragile: bool = False

    def to_item(self) -> ItemInfo:
        return ItemInfo(name=self.name, weight_kg=self.weight_kg, size=self.size, fragile=self.fragile)


class RouteIn(BaseModel):
    pickup_address: str
    dropoff_address: str
    pickup_location: Optional[CoordinateIn] = None
    dropoff_location: Optional[CoordinateIn] = None
    distance_km: Optional[float] = Field(default=None, allow_inf_nan=False)

    def to_route(self) -> RouteInfo:
        return RouteInfo(
            pickup_address=self.pickup_address,
            dropoff_address=self.dropoff_address,
            pickup_location=_coordinate(self.pickup_location),
            dropoff_location=_coordinate(self.dropoff_location),
            distance_km=self.distance_km,
        )


class DeliveryCreate(RouteIn):
    """Schema for creating a new delivery"""
    seller_id: str
    seller_name: str
    item: ItemIn
    payment_type: PaymentType = PaymentType.PREPAID


class BulkOrderIn(RouteIn):
    item: ItemIn
    payment_type: PaymentType = PaymentType.PREPAID


class BulkDeliveryCreate(BaseModel):
    seller_id: str
    seller_name: str
    orders: List[BulkOrderIn] = Field(default_factory=list)


class FeeQuoteRequest(RouteIn):
    item: ItemIn
    payment_type: PaymentType = PaymentType.PREPAID


class FeeQuoteResponse(BaseModel):
    distance_km: float
    base: float
    distance: float
    weight: float
    fragile: float
    cod: int
    total: int


class ClaimRequest(BaseModel):
    driver_id: str
    name: str
    phone: Optional[str] = None


class AdvanceRequest(BaseModel):
    driver_id: str
    location: Optional[CoordinateIn] = None


class CompletionResponse(BaseModel):
    delivery: DeliverySnapshot
    credited_amount: int
    credit_kind: TransactionType
    balance: int


class ProofRequest(BaseModel):
    proof_type: ProofType
    payload: str
    uploaded_by: str


class FeedbackRequest(BaseModel):
    rating: int
    comment: str = ""
    given_by: FeedbackAuthor


class LocationUpdateResponse(BaseModel):
    driver_id: str
    updated: int


# ==================== Creation ====================


@router.post(
    "/",
    response_model=DeliverySnapshot,
    summary="Create a new delivery",
    description="Creates a pending delivery; the fee is computed once here and never changes.",
    responses={400: {"description": "Missing seller, address or item name"}},
)
async def create_delivery(
    data: DeliveryCreate,
    service: DeliveryService = Depends(get_delivery_service),
) -> DeliverySnapshot:
    logger.info("Creating new delivery", extra_data={"seller_id": data.seller_id})
    return await service.create_delivery(
        seller=SellerInfo(seller_id=data.seller_id, name=data.seller_name),
        route=data.to_route(),
        item=data.item.to_item(),
        payment_type=data.payment_type,
    )


@router.post(
    "/bulk",
    response_model=List[DeliverySnapshot],
    summary="Create several deliveries at once",
    description="All orders are validated first and stored in one transaction: either all or none.",
)
async def create_bulk_deliveries(
    data: BulkDeliveryCreate,
    service: DeliveryService = Depends(get_delivery_service),
) -> List[DeliverySnapshot]:
    return await service.create_bulk(
        SellerInfo(seller_id=data.seller_id, name=data.seller_name),
        [
            DeliveryOrder(route=order.to_route(), item=order.item.to_item(), payment_type=order.payment_type)
            for order in data.orders
        ],
    )


@router.post(
    "/quote",
    response_model=FeeQuoteResponse,
    summary="Fee breakdown before creating a delivery",
)
async def quote_fee(data: FeeQuoteRequest) -> FeeQuoteResponse:
    route = data.to_route()
    distance_km = route.distance_km
    if distance_km is None:
        distance_km = estimate_distance_km(route.pickup_location, route.dropoff_location)
    breakdown = fee_breakdown(distance_km, data.item.weight_kg, data.item.fragile, data.payment_type)
    return FeeQuoteResponse(
        distance_km=distance_km,
        base=float(breakdown.base),
        distance=float(breakdown.distance),
        weight=float(breakdown.weight),
        fragile=float(breakdown.fragile),
        cod=breakdown.cod,
        total=breakdown.total,
    )


# ==================== Reads ====================


@router.get(
    "/pending",
    response_model=List[DeliverySnapshot],
    summary="Deliveries waiting for a driver",
    description="Newest first.",
)
async def get_pending_deliveries(
    service: DeliveryService = Depends(get_delivery_service),
) -> List[DeliverySnapshot]:
    return await service.get_pending_deliveries()


@router.get(
    "/seller/{seller_id}",
    response_model=List[DeliverySnapshot],
    summary="A seller's deliveries",
)
async def get_seller_deliveries(
    seller_id: str,
    service: DeliveryService = Depends(get_delivery_service),
) -> List[DeliverySnapshot]:
    return await service.get_seller_deliveries(seller_id)


@router.get(
    "/driver/{driver_id}",
    response_model=List[DeliverySnapshot],
    summary="A driver's deliveries",
)
async def get_driver_deliveries(
    driver_id: str,
    active_only: bool = False,
    service: DeliveryService = Depends(get_delivery_service),
) -> List[DeliverySnapshot]:
    if active_only:
        return await service.get_active_deliveries(driver_id)
    return await service.get_driver_deliveries(driver_id)


@router.get(
    "/{delivery_id}",
    response_model=DeliverySnapshot,
    summary="Get delivery by ID",
    responses={404: {"description": "Delivery not found"}},
)
async def get_delivery(
    delivery_id: str,
    service: DeliveryService = Depends(get_delivery_service),
) -> DeliverySnapshot:
    delivery = await service.get_delivery(delivery_id)
    if delivery is None:
        raise DeliveryNotFoundError(delivery_id)
    return delivery


# ==================== Lifecycle ====================


@router.post(
    "/{delivery_id}/claim",
    response_model=DeliverySnapshot,
    summary="Claim a pending delivery",
    description="Atomic: when two drivers claim at once exactly one succeeds, the other gets 409.",
    responses={
        404: {"description": "Delivery not found"},
        409: {"description": "Delivery already claimed"},
        504: {"description": "Outcome unknown; re-read the delivery before retrying"},
    },
)
async def claim_delivery(
    delivery_id: str,
    data: ClaimRequest,
    service: ClaimService = Depends(get_claim_service),
) -> DeliverySnapshot:
    logger.info(
        "Claim delivery request",
        extra_data={"delivery_id": delivery_id, "driver_id": data.driver_id},
    )
    return await run_with_timeout(
        service.claim(delivery_id, DriverInfo(driver_id=data.driver_id, name=data.name, phone=data.phone)),
        "claim_delivery",
    )


@router.post(
    "/{delivery_id}/advance",
    response_model=DeliverySnapshot,
    summary="Advance to the next status",
    description=(
        "assigned → picked_up → in_transit → delivered. "
        "The last step credits the driver exactly like /complete."
    ),
    responses={
        403: {"description": "Not the assigned driver"},
        409: {"description": "No legal next status, or the delivery moved on since it was read"},
        504: {"description": "Outcome unknown; check the delivery and the wallet before retrying"},
    },
)
async def advance_delivery(
    delivery_id: str,
    data: AdvanceRequest,
    service: DeliveryCompletionService = Depends(get_completion_service),
) -> DeliverySnapshot:
    return await service.advance(delivery_id, data.driver_id, _coordinate(data.location))


@router.post(
    "/{delivery_id}/complete",
    response_model=CompletionResponse,
    summary="Mark delivered and credit the driver",
    description="in_transit → delivered, then one wallet credit (cod_settlement for COD, earning for prepaid).",
    responses={
        409: {"description": "Delivery is not in transit"},
        504: {"description": "Outcome unknown; check the delivery and the wallet before retrying"},
    },
)
async def complete_delivery(
    delivery_id: str,
    data: AdvanceRequest,
    service: DeliveryCompletionService = Depends(get_completion_service),
) -> CompletionResponse:
    result = await service.complete(delivery_id, data.driver_id, _coordinate(data.location))
    return CompletionResponse(
        delivery=result.delivery,
        credited_amount=result.credited_amount,
        credit_kind=result.credit_kind,
        balance=result.balance,
    )


@router.post(
    "/{delivery_id}/proof",
    response_model=DeliverySnapshot,
    summary="Attach proof of delivery (write-once)",
    responses={409: {"description": "Not delivered yet, or proof already attached"}},
)
async def attach_proof(
    delivery_id: str,
    data: ProofRequest,
    service: DeliveryService = Depends(get_delivery_service),
) -> DeliverySnapshot:
    return await run_with_timeout(
        service.attach_proof(delivery_id, data.proof_type, data.payload, data.uploaded_by),
        "attach_proof",
    )


@router.post(
    "/{delivery_id}/feedback",
    response_model=DeliverySnapshot,
    summary="Attach feedback (write-once)",
    responses={409: {"description": "Not delivered yet, or feedback already attached"}},
)
async def attach_feedback(
    delivery_id: str,
    data: FeedbackRequest,
    service: DeliveryService = Depends(get_delivery_service),
) -> DeliverySnapshot:
    return await run_with_timeout(
        service.attach_feedback(delivery_id, data.rating, data.comment, data.given_by),
        "attach_feedback",
    )


@router.post(
    "/drivers/{driver_id}/location",
    response_model=LocationUpdateResponse,
    summary="Update the driver's current location",
    description="Applies to all of the driver's active deliveries; no tracking entry is appended.",
)
async def update_driver_location(
    driver_id: str,
    data: CoordinateIn,
    service: DeliveryService = Depends(get_delivery_service),
) -> LocationUpdateResponse:
    if not driver_id.strip():
        raise ValidationError("driver_id is required", field="driver_id")
    updated = await service.update_driver_location(driver_id, data.to_coordinate())
    return LocationUpdateResponse(driver_id=driver_id, updated=updated)
