"""
Collaborator interfaces the cart core consumes.

VendureApiWrapper implements all of them over GraphQL. Tests substitute
AsyncMock objects with the same method names.
"""

from typing import Protocol

from models.cart import VariantStockDTO
from models.coupon import CustomerDTO, PromotionDTO
from models.order import OrderDTO, OrderLineInputDTO, PaymentResultDTO


class StockPriceSource(Protocol):
    async def fetch_variant_stock(self, variant_ids: list[str]) -> list[VariantStockDTO]:
        """Current stock and price per variant. Unknown IDs are omitted."""
        ...


class CatalogStockSource(Protocol):
    async def fetch_product_stock(self, slugs: list[str]) -> dict[str, dict[str, str]]:
        """Stock level per variant ID, grouped by product slug."""
        ...


class PromotionSource(Protocol):
    async def find_promotions_by_coupon(self, coupon_code: str) -> list[PromotionDTO]: ...


class CustomerSource(Protocol):
    async def get_customer(self, customer_id: str) -> CustomerDTO | None: ...


class OrderCreator(Protocol):
    async def create_order(self, lines: list[OrderLineInputDTO], coupon_code: str | None = None) -> OrderDTO: ...


class PaymentGateway(Protocol):
    async def create_payment(self, order: OrderDTO) -> PaymentResultDTO: ...
