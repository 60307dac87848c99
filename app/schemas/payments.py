from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class PriceComponent(BaseModel):
    name: str
    quantity: int = 1
    price: Decimal  # major units, line total


class BonusBlock(BaseModel):
    bonuses: List[PriceComponent] = Field(default_factory=list)


class ExtrasBlock(BaseModel):
    extras: List[PriceComponent] = Field(default_factory=list)


class BasketBreakdown(BaseModel):
    """Priced breakdown of a booking as computed at checkout."""
    price_base: Optional[PriceComponent] = None
    bonus: BonusBlock = Field(default_factory=BonusBlock)
    reduction: Optional[PriceComponent] = None
    tva: Optional[PriceComponent] = None
    boukii_care: Optional[PriceComponent] = None
    cancellation_insurance: Optional[PriceComponent] = None
    extras: ExtrasBlock = Field(default_factory=ExtrasBlock)
    price_total: Optional[Decimal] = None


class PaymentLinkRequest(BaseModel):
    basket: BasketBreakdown
    # "panel", "app", an absolute URL, or omitted for no redirect
    redirectTo: Optional[str] = None


class VoucherPaymentLinkRequest(BaseModel):
    redirectTo: Optional[str] = "app"


class PaymentLinkOut(BaseModel):
    ok: bool
    url: str = ""
    error: Optional[str] = None


class RefundRequest(BaseModel):
    amount: Decimal = Field(gt=0)


class RefundOut(BaseModel):
    ok: bool
    status: Optional[str] = None
    error: Optional[str] = None


FinishStatus = Literal["success", "failed", "cancel"]
