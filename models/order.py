from pydantic import BaseModel


class OrderLineInputDTO(BaseModel):
    product_variant_id: str
    quantity: int


class OrderLineDTO(BaseModel):
    id: str
    product_variant_id: str
    quantity: int
    unit_price_with_tax: int | None = None


class OrderDTO(BaseModel):
    id: str
    code: str
    state: str | None = None
    total_with_tax: int | None = None
    lines: list[OrderLineDTO] = []
    coupon_codes: list[str] = []


class ConversionResultDTO(BaseModel):
    success: bool
    order: OrderDTO | None = None
    errors: list[str] = []
    line_errors: dict[str, str] = {}
    retryable: bool = False


class PaymentResultDTO(BaseModel):
    success: bool
    order_code: str
    transaction_id: str | None = None
    state: str | None = None
    error: str | None = None


class CheckoutResultDTO(BaseModel):
    conversion: ConversionResultDTO
    payment: PaymentResultDTO | None = None

    @property
    def success(self) -> bool:
        return self.conversion.success and self.payment is not None and self.payment.success
