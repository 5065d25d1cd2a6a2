from pydantic import BaseModel

from enums.mutation_status import MutationStatus
from models.cart import LocalCartDTO, StockValidationResultDTO
from models.coupon import AppliedCouponDTO


class CartStateDTO(BaseModel):
    """Observable state of one cart session (one tab)."""
    local_cart: LocalCartDTO
    is_loading: bool = False
    last_error: str | None = None
    has_loaded_once: bool = False
    is_refreshing_stock: bool = False
    last_stock_validation: dict[str, StockValidationResultDTO] = {}
    applied_coupon: AppliedCouponDTO | None = None
    coupon_error: str | None = None
    last_stock_refresh: int = 0  # epoch ms
    mutation_status: MutationStatus = MutationStatus.IDLE
    active_order_code: str | None = None
    needs_revalidation: bool = False
    customer_id: str | None = None


class MutationResultDTO(BaseModel):
    status: MutationStatus
    cart: LocalCartDTO
    stock_result: StockValidationResultDTO | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status in (MutationStatus.SETTLED, MutationStatus.SETTLED_WITH_WARNING)
