# the local cart lives entirely in durable key-value storage until checkout. Money is
# always held in minor currency units (cents). total_quantity and sub_total are derived
# fields: recalculate_totals() must run after every mutation and after every load, the
# stored values are never trusted.
from pydantic import BaseModel, Field, field_validator, model_validator

from enums.stock_action import StockAction
from enums.stock_status import StockStatus


class ProductRefDTO(BaseModel):
    id: str
    name: str
    slug: str | None = None


class VariantOptionDTO(BaseModel):
    id: str | None = None
    code: str | None = None
    name: str
    group_name: str | None = None


class AssetDTO(BaseModel):
    id: str | None = None
    preview: str | None = None


class ProductVariantDTO(BaseModel):
    id: str
    name: str
    price: int = Field(ge=0)
    stock_level: str | None = None  # Snapshot at the time the line was written
    sku: str | None = None
    product: ProductRefDTO | None = None
    options: list[VariantOptionDTO] = []
    featured_asset: AssetDTO | None = None


class CartItemDTO(BaseModel):
    product_variant_id: str
    quantity: int = Field(gt=0)
    last_stock_check: int | None = None  # epoch ms
    product_variant: ProductVariantDTO

    @model_validator(mode="after")
    def variant_id_matches(self) -> "CartItemDTO":
        if self.product_variant_id != self.product_variant.id:
            raise ValueError(
                f"product_variant_id {self.product_variant_id} does not match variant {self.product_variant.id}"
            )
        return self

    @property
    def line_total(self) -> int:
        return self.quantity * self.product_variant.price


class LocalCartDTO(BaseModel):
    items: list[CartItemDTO] = []
    total_quantity: int = 0
    sub_total: int = 0
    currency_code: str = "USD"

    @field_validator("items")
    @classmethod
    def unique_variants(cls, items: list[CartItemDTO]) -> list[CartItemDTO]:
        seen = set()
        for item in items:
            if item.product_variant_id in seen:
                raise ValueError(f"Duplicate cart line for variant {item.product_variant_id}")
            seen.add(item.product_variant_id)
        return items

    @classmethod
    def empty(cls, currency_code: str = "USD") -> "LocalCartDTO":
        return cls(items=[], total_quantity=0, sub_total=0, currency_code=currency_code)

    def recalculate_totals(self) -> "LocalCartDTO":
        self.total_quantity = sum(item.quantity for item in self.items)
        self.sub_total = sum(item.line_total for item in self.items)
        return self

    def find_item(self, variant_id: str) -> CartItemDTO | None:
        return next((item for item in self.items if item.product_variant_id == variant_id), None)

    @property
    def is_empty(self) -> bool:
        return len(self.items) == 0


class CartEnvelopeDTO(BaseModel):
    """Durable record of the cart: one key per origin."""
    version: str
    last_update: int  # epoch ms
    cart: LocalCartDTO


class StockValidationResultDTO(BaseModel):
    success: bool
    available_stock: int | None = None
    adjusted_quantity: int | None = None
    error: str | None = None
    action: StockAction = StockAction.NONE


class StockValidationErrorsDTO(BaseModel):
    """Outcome of a full-cart, forced-fresh stock validation."""
    valid: bool
    errors: list[str] = []
    line_errors: dict[str, str] = {}
    prices: dict[str, int] = {}  # Authoritative unit price per variant
    retryable: bool = False


class VariantStockDTO(BaseModel):
    variant_id: str
    stock_level: int
    price: int | None = None
    currency_code: str | None = None
    product_id: str | None = None
    name: str | None = None
    status: StockStatus = StockStatus.FETCHED

    @property
    def is_confirmed(self) -> bool:
        return self.status != StockStatus.STALE
