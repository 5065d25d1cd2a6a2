import asyncio
import logging
from typing import Any

import aiohttp

import config
from exceptions.network import NetworkFailureException
from exceptions.order import ConversionFailureException
from models.cart import VariantStockDTO
from models.coupon import ConfigArgDTO, ConfigurableOperationDTO, CustomerDTO, PromotionDTO
from models.order import OrderDTO, OrderLineDTO, OrderLineInputDTO, PaymentResultDTO
from utils.stock_level import parse_stock_level
from vendure_api import queries

logger = logging.getLogger(__name__)


class VendureApiWrapper:
    """
    GraphQL client for the commerce backend.

    Shop API calls (active order, payment) share one aiohttp session so the
    session cookie issued by the backend follows the shopper. Admin API calls
    (variants, promotions, customers) are authenticated with the API token.
    """

    def __init__(self,
                 shop_api_url: str = config.VENDURE_SHOP_API_URL,
                 admin_api_url: str = config.VENDURE_ADMIN_API_URL,
                 api_token: str | None = config.VENDURE_API_TOKEN,
                 channel_token: str | None = config.VENDURE_CHANNEL_TOKEN,
                 timeout_seconds: float = config.VENDURE_REQUEST_TIMEOUT_SECONDS,
                 payment_method_code: str = "stripe",
                 session: aiohttp.ClientSession | None = None):
        self.shop_api_url = shop_api_url
        self.admin_api_url = admin_api_url
        self.api_token = api_token
        self.channel_token = channel_token
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.payment_method_code = payment_method_code
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _headers(self, admin: bool) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.channel_token:
            headers["vendure-token"] = self.channel_token
        if admin and self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def fetch_graphql(self, query: str, variables: dict | None = None,
                            admin: bool = False, operation: str = "graphql") -> dict[str, Any]:
        """
        Execute one GraphQL request and return its ``data`` object.

        Raises:
            NetworkFailureException: On transport errors, timeouts, non-2xx
                responses and top-level GraphQL errors
        """
        url = self.admin_api_url if admin else self.shop_api_url
        payload = {"query": query, "variables": variables or {}}
        try:
            async with self._get_session().post(url, json=payload, headers=self._headers(admin)) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise NetworkFailureException(operation, f"HTTP {response.status}: {text[:200]}", response.status)
                body = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkFailureException(operation, str(e) or type(e).__name__) from e

        if body.get("errors"):
            messages = "; ".join(err.get("message", "unknown error") for err in body["errors"])
            raise NetworkFailureException(operation, messages)
        return body.get("data") or {}

    # ------------------------------------------------------------------
    # Stock / price
    # ------------------------------------------------------------------

    async def fetch_variant_stock(self, variant_ids: list[str]) -> list[VariantStockDTO]:
        if not variant_ids:
            return []
        data = await self.fetch_graphql(
            queries.GET_VARIANT_STOCK,
            {"ids": list(variant_ids), "take": len(variant_ids)},
            admin=True,
            operation="fetch_variant_stock"
        )
        items = (data.get("productVariants") or {}).get("items") or []
        return [
            VariantStockDTO(
                variant_id=str(item["id"]),
                name=item.get("name"),
                stock_level=parse_stock_level(item.get("stockLevel")),
                price=item.get("priceWithTax"),
                currency_code=item.get("currencyCode"),
                product_id=(item.get("product") or {}).get("id"),
            )
            for item in items
        ]

    async def fetch_product_stock(self, slugs: list[str]) -> dict[str, dict[str, str]]:
        result = {}
        for slug in slugs:
            data = await self.fetch_graphql(
                queries.GET_PRODUCT_STOCK, {"slug": slug}, operation="fetch_product_stock"
            )
            product = data.get("product")
            if product is None:
                logger.warning(f"[Vendure] Product '{slug}' not found while fetching stock")
                result[slug] = {}
                continue
            result[slug] = {
                str(variant["id"]): str(variant.get("stockLevel", "0"))
                for variant in product.get("variants") or []
            }
        return result

    # ------------------------------------------------------------------
    # Promotions / customers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_operation(raw: dict) -> ConfigurableOperationDTO:
        return ConfigurableOperationDTO(
            code=raw["code"],
            args=[ConfigArgDTO(name=arg["name"], value=arg.get("value")) for arg in raw.get("args") or []]
        )

    async def find_promotions_by_coupon(self, coupon_code: str) -> list[PromotionDTO]:
        data = await self.fetch_graphql(
            queries.FIND_PROMOTIONS_BY_COUPON, {"code": coupon_code},
            admin=True, operation="find_promotions_by_coupon"
        )
        items = (data.get("promotions") or {}).get("items") or []
        return [
            PromotionDTO(
                id=str(item["id"]),
                name=item["name"],
                description=item.get("description"),
                coupon_code=item["couponCode"],
                enabled=item.get("enabled", True),
                starts_at=item.get("startsAt"),
                ends_at=item.get("endsAt"),
                usage_limit=item.get("usageLimit"),
                per_customer_usage_limit=item.get("perCustomerUsageLimit"),
                conditions=[self._parse_operation(c) for c in item.get("conditions") or []],
                actions=[self._parse_operation(a) for a in item.get("actions") or []],
            )
            for item in items
        ]

    async def get_customer(self, customer_id: str) -> CustomerDTO | None:
        data = await self.fetch_graphql(
            queries.GET_CUSTOMER, {"id": customer_id}, admin=True, operation="get_customer"
        )
        customer = data.get("customer")
        if customer is None:
            return None
        custom_fields = customer.get("customFields") or {}
        return CustomerDTO(
            id=str(customer["id"]),
            group_ids=[str(group["id"]) for group in customer.get("groups") or []],
            active_verifications=list(custom_fields.get("activeVerifications") or []),
        )

    # ------------------------------------------------------------------
    # Orders / payments
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_order(raw: dict) -> OrderDTO:
        return OrderDTO(
            id=str(raw["id"]),
            code=raw["code"],
            state=raw.get("state"),
            total_with_tax=raw.get("totalWithTax"),
            coupon_codes=raw.get("couponCodes") or [],
            lines=[
                OrderLineDTO(
                    id=str(line["id"]),
                    product_variant_id=str(line["productVariant"]["id"]),
                    quantity=line["quantity"],
                    unit_price_with_tax=line.get("unitPriceWithTax"),
                )
                for line in raw.get("lines") or []
            ],
        )

    async def _clear_active_order(self):
        data = await self.fetch_graphql(queries.GET_ACTIVE_ORDER, operation="get_active_order")
        active = data.get("activeOrder")
        if not active or not active.get("lines"):
            return
        logger.info(f"[Vendure] Clearing {len(active['lines'])} existing lines from order {active['code']}")
        data = await self.fetch_graphql(queries.REMOVE_ALL_ORDER_LINES, operation="remove_all_order_lines")
        result = data.get("removeAllOrderLines") or {}
        if result.get("errorCode"):
            raise ConversionFailureException(result.get("message", "Could not clear active order"),
                                             result["errorCode"], active.get("code"))

    async def _add_items_batch(self, lines: list[OrderLineInputDTO]) -> OrderDTO:
        data = await self.fetch_graphql(
            queries.ADD_ITEMS_TO_ORDER,
            {"inputs": [{"productVariantId": line.product_variant_id, "quantity": line.quantity} for line in lines]},
            operation="add_items_to_order"
        )
        result = data.get("addItemsToOrder") or {}
        errors = result.get("errorResults") or []
        if errors:
            raise ConversionFailureException(
                "; ".join(err.get("message", "") for err in errors), errors[0].get("errorCode")
            )
        if not result.get("order"):
            raise ConversionFailureException("Backend returned no order after adding items")
        return self._parse_order(result["order"])

    async def _add_items_sequential(self, lines: list[OrderLineInputDTO]) -> OrderDTO:
        order = None
        for line in lines:
            data = await self.fetch_graphql(
                queries.ADD_ITEM_TO_ORDER,
                {"productVariantId": line.product_variant_id, "quantity": line.quantity},
                operation="add_item_to_order"
            )
            result = data.get("addItemToOrder") or {}
            if result.get("errorCode"):
                raise ConversionFailureException(
                    f"{line.product_variant_id}: {result.get('message', 'could not be added')}",
                    result["errorCode"], order.code if order else None
                )
            order = self._parse_order(result)
        return order

    async def create_order(self, lines: list[OrderLineInputDTO], coupon_code: str | None = None) -> OrderDTO:
        """
        Turn validated cart lines into the shopper's active backend order.

        Existing lines on the active order are removed first. Items go in as
        one batch; a backend without batch support falls back to one mutation
        per line. A coupon the backend rejects does not fail the conversion.

        Raises:
            NetworkFailureException: On transport or GraphQL errors
            ConversionFailureException: If the backend rejects any line
        """
        await self._clear_active_order()

        try:
            order = await self._add_items_batch(lines)
        except NetworkFailureException as e:
            logger.warning(f"[Vendure] Batch add failed ({e.reason}), falling back to sequential add")
            order = await self._add_items_sequential(lines)

        added = {line.product_variant_id: line.quantity for line in order.lines}
        missing = [line.product_variant_id for line in lines if added.get(line.product_variant_id) != line.quantity]
        if missing:
            raise ConversionFailureException(
                f"Backend order does not contain the requested quantity for: {', '.join(missing)}",
                order_code=order.code
            )

        if coupon_code:
            try:
                data = await self.fetch_graphql(
                    queries.APPLY_COUPON_CODE, {"couponCode": coupon_code}, operation="apply_coupon_code"
                )
                result = data.get("applyCouponCode") or {}
                if result.get("errorCode"):
                    logger.warning(f"[Vendure] Coupon rejected by backend: {result.get('message')}")
                else:
                    order = self._parse_order(result)
            except NetworkFailureException as e:
                logger.warning(f"[Vendure] Coupon could not be applied: {e.reason}")

        logger.info(f"[Vendure] ✅ Order {order.code} created with {len(order.lines)} lines")
        return order

    async def create_payment(self, order: OrderDTO) -> PaymentResultDTO:
        data = await self.fetch_graphql(queries.TRANSITION_TO_ARRANGING_PAYMENT, operation="transition_order")
        transition = data.get("transitionOrderToState") or {}
        if transition.get("errorCode"):
            return PaymentResultDTO(
                success=False, order_code=order.code,
                error=transition.get("transitionError") or transition.get("message")
            )

        data = await self.fetch_graphql(
            queries.ADD_PAYMENT_TO_ORDER,
            {"input": {"method": self.payment_method_code, "metadata": {"orderCode": order.code}}},
            operation="add_payment_to_order"
        )
        result = data.get("addPaymentToOrder") or {}
        if result.get("errorCode"):
            return PaymentResultDTO(success=False, order_code=order.code, error=result.get("message"))

        payments = result.get("payments") or []
        latest = payments[-1] if payments else {}
        return PaymentResultDTO(
            success=result.get("state") in ("PaymentSettled", "PaymentAuthorized"),
            order_code=result.get("code", order.code),
            transaction_id=latest.get("transactionId"),
            state=result.get("state"),
            error=None if latest.get("state") != "Declined" else "Payment declined",
        )
