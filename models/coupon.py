from pydantic import BaseModel


class ConfigArgDTO(BaseModel):
    name: str
    value: str | int | float | None = None


class ConfigurableOperationDTO(BaseModel):
    """A promotion condition or action: operation code plus its named arguments."""
    code: str
    args: list[ConfigArgDTO] = []

    def arg(self, name: str) -> str | int | float | None:
        return next((a.value for a in self.args if a.name == name), None)


class PromotionDTO(BaseModel):
    id: str
    name: str
    description: str | None = None
    coupon_code: str
    enabled: bool = True
    deleted_at: str | None = None
    starts_at: str | None = None  # ISO 8601
    ends_at: str | None = None  # ISO 8601
    conditions: list[ConfigurableOperationDTO] = []
    actions: list[ConfigurableOperationDTO] = []
    usage_limit: int | None = None
    per_customer_usage_limit: int | None = None


class CustomerDTO(BaseModel):
    id: str
    group_ids: list[str] = []
    active_verifications: list[str] = []


class CouponCartItemDTO(BaseModel):
    product_variant_id: str
    quantity: int
    unit_price: int


class CouponValidationResultDTO(BaseModel):
    is_valid: bool
    validation_errors: list[str] = []
    applied_coupon_code: str | None = None
    discount_amount: int = 0
    discount_percentage: float | None = None
    free_shipping: bool = False
    promotion_name: str | None = None
    promotion_description: str | None = None
    retryable: bool = False


class AppliedCouponDTO(BaseModel):
    code: str
    discount_amount: int = 0
    discount_percentage: float | None = None
    free_shipping: bool = False
    promotion_name: str | None = None
    promotion_description: str | None = None
