"""
Unit Tests: VendureApiWrapper

fetch_graphql is patched, so these tests cover response parsing and the
order-creation protocol without any HTTP traffic.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from exceptions.network import NetworkFailureException
from exceptions.order import ConversionFailureException
from models.order import OrderDTO, OrderLineInputDTO
from vendure_api import queries
from vendure_api.VendureApiWrapper import VendureApiWrapper


def order_payload(code: str = "ORD1", lines=(("1", 2),), state: str = "AddingItems") -> dict:
    return {
        "id": "50",
        "code": code,
        "state": state,
        "totalWithTax": 5800,
        "couponCodes": [],
        "lines": [
            {"id": str(index), "quantity": quantity, "unitPriceWithTax": 2900, "productVariant": {"id": variant_id}}
            for index, (variant_id, quantity) in enumerate(lines)
        ],
    }


@pytest.fixture
def api():
    return VendureApiWrapper(shop_api_url="http://shop", admin_api_url="http://admin",
                             api_token="token", channel_token="channel")


class TestHeaders:

    def test_admin_requests_carry_bearer_token(self, api):
        assert api._headers(admin=True)["Authorization"] == "Bearer token"
        assert "Authorization" not in api._headers(admin=False)
        assert api._headers(admin=False)["vendure-token"] == "channel"


class TestFetchGraphql:

    @pytest.mark.asyncio
    async def test_graphql_errors_raise_network_failure(self, api):
        response = MagicMock()
        response.status = 200
        response.json = AsyncMock(return_value={"errors": [{"message": "Forbidden"}]})
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=response)
        context.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.closed = False
        session.post = MagicMock(return_value=context)
        api._session = session

        with pytest.raises(NetworkFailureException) as exc_info:
            await api.fetch_graphql("query { x }", operation="test_op")

        assert exc_info.value.operation == "test_op"
        assert exc_info.value.reason == "Forbidden"

    @pytest.mark.asyncio
    async def test_http_error_status(self, api):
        response = MagicMock()
        response.status = 503
        response.text = AsyncMock(return_value="Service Unavailable")
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=response)
        context.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.closed = False
        session.post = MagicMock(return_value=context)
        api._session = session

        with pytest.raises(NetworkFailureException) as exc_info:
            await api.fetch_graphql("query { x }")

        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_transport_error(self, api):
        session = MagicMock()
        session.closed = False
        session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        api._session = session

        with pytest.raises(NetworkFailureException):
            await api.fetch_graphql("query { x }")


class TestStockQueries:

    @pytest.mark.asyncio
    async def test_fetch_variant_stock(self, api):
        data = {"productVariants": {"items": [
            {"id": 1, "name": "Tee S", "stockLevel": "7", "priceWithTax": 2900, "currencyCode": "USD",
             "product": {"id": "1"}},
            {"id": 2, "name": "Tee M", "stockLevel": "OUT_OF_STOCK", "priceWithTax": 2900, "currencyCode": "USD",
             "product": {"id": "1"}},
        ]}}
        with patch.object(api, "fetch_graphql", AsyncMock(return_value=data)) as fetch:
            stock = await api.fetch_variant_stock(["1", "2"])

        assert [(s.variant_id, s.stock_level, s.product_id) for s in stock] == [("1", 7, "1"), ("2", 0, "1")]
        assert fetch.await_args.args[0] == queries.GET_VARIANT_STOCK
        assert fetch.await_args.kwargs["admin"] is True

    @pytest.mark.asyncio
    async def test_fetch_variant_stock_with_no_ids(self, api):
        with patch.object(api, "fetch_graphql", AsyncMock()) as fetch:
            assert await api.fetch_variant_stock([]) == []
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_product_stock(self, api):
        responses = [
            {"product": {"variants": [{"id": 1, "stockLevel": "3"}, {"id": 2, "stockLevel": "0"}]}},
            {"product": None},
        ]
        with patch.object(api, "fetch_graphql", AsyncMock(side_effect=responses)):
            stock = await api.fetch_product_stock(["tee", "missing"])

        assert stock == {"tee": {"1": "3", "2": "0"}, "missing": {}}


class TestPromotionQueries:

    @pytest.mark.asyncio
    async def test_find_promotions_by_coupon(self, api):
        data = {"promotions": {"items": [{
            "id": 4, "name": "Save 10", "couponCode": "SAVE10", "enabled": True,
            "startsAt": None, "endsAt": "2030-01-01T00:00:00Z", "usageLimit": 100,
            "conditions": [{"code": "minimum_order_amount", "args": [{"name": "amount", "value": "5000"}]}],
            "actions": [{"code": "order_percentage_discount", "args": [{"name": "discount", "value": "10"}]}],
        }]}}
        with patch.object(api, "fetch_graphql", AsyncMock(return_value=data)):
            promotions = await api.find_promotions_by_coupon("SAVE10")

        assert promotions[0].id == "4"
        assert promotions[0].conditions[0].arg("amount") == "5000"
        assert promotions[0].usage_limit == 100

    @pytest.mark.asyncio
    async def test_get_customer(self, api):
        data = {"customer": {"id": 9, "groups": [{"id": 3}], "customFields": {"activeVerifications": ["student"]}}}
        with patch.object(api, "fetch_graphql", AsyncMock(return_value=data)):
            customer = await api.get_customer("9")

        assert customer.group_ids == ["3"]
        assert customer.active_verifications == ["student"]

    @pytest.mark.asyncio
    async def test_unknown_customer(self, api):
        with patch.object(api, "fetch_graphql", AsyncMock(return_value={"customer": None})):
            assert await api.get_customer("404") is None


class TestCreateOrder:

    @pytest.mark.asyncio
    async def test_batch_add_and_coupon(self, api):
        responses = {
            queries.GET_ACTIVE_ORDER: {"activeOrder": None},
            queries.ADD_ITEMS_TO_ORDER: {"addItemsToOrder": {"order": order_payload(), "errorResults": []}},
            queries.APPLY_COUPON_CODE: {"applyCouponCode": {**order_payload(), "couponCodes": ["SAVE10"]}},
        }

        async def fetch(query, variables=None, admin=False, operation="graphql"):
            return responses[query]

        with patch.object(api, "fetch_graphql", AsyncMock(side_effect=fetch)):
            order = await api.create_order([OrderLineInputDTO(product_variant_id="1", quantity=2)], "SAVE10")

        assert order.code == "ORD1"
        assert order.coupon_codes == ["SAVE10"]

    @pytest.mark.asyncio
    async def test_existing_lines_are_cleared_first(self, api):
        calls = []
        responses = {
            queries.GET_ACTIVE_ORDER: {"activeOrder": {"code": "OLD", "lines": [{"id": "1"}]}},
            queries.REMOVE_ALL_ORDER_LINES: {"removeAllOrderLines": {"code": "OLD"}},
            queries.ADD_ITEMS_TO_ORDER: {"addItemsToOrder": {"order": order_payload(), "errorResults": []}},
        }

        async def fetch(query, variables=None, admin=False, operation="graphql"):
            calls.append(query)
            return responses[query]

        with patch.object(api, "fetch_graphql", AsyncMock(side_effect=fetch)):
            await api.create_order([OrderLineInputDTO(product_variant_id="1", quantity=2)])

        assert calls == [queries.GET_ACTIVE_ORDER, queries.REMOVE_ALL_ORDER_LINES, queries.ADD_ITEMS_TO_ORDER]

    @pytest.mark.asyncio
    async def test_falls_back_to_sequential_add(self, api):
        async def fetch(query, variables=None, admin=False, operation="graphql"):
            if query == queries.GET_ACTIVE_ORDER:
                return {"activeOrder": None}
            if query == queries.ADD_ITEMS_TO_ORDER:
                raise NetworkFailureException(operation, "Cannot query field addItemsToOrder")
            added = [("1", 1)] if variables["productVariantId"] == "1" else [("1", 1), ("2", 1)]
            return {"addItemToOrder": order_payload(lines=added)}

        lines = [OrderLineInputDTO(product_variant_id="1", quantity=1),
                 OrderLineInputDTO(product_variant_id="2", quantity=1)]
        with patch.object(api, "fetch_graphql", AsyncMock(side_effect=fetch)):
            order = await api.create_order(lines)

        assert [(line.product_variant_id, line.quantity) for line in order.lines] == [("1", 1), ("2", 1)]

    @pytest.mark.asyncio
    async def test_rejected_line_fails_conversion(self, api):
        responses = {
            queries.GET_ACTIVE_ORDER: {"activeOrder": None},
            queries.ADD_ITEMS_TO_ORDER: {"addItemsToOrder": {"order": None, "errorResults": [
                {"errorCode": "INSUFFICIENT_STOCK_ERROR", "message": "Only 1 item may be added"}
            ]}},
        }

        async def fetch(query, variables=None, admin=False, operation="graphql"):
            return responses[query]

        with patch.object(api, "fetch_graphql", AsyncMock(side_effect=fetch)):
            with pytest.raises(ConversionFailureException) as exc_info:
                await api.create_order([OrderLineInputDTO(product_variant_id="1", quantity=2)])

        assert exc_info.value.error_code == "INSUFFICIENT_STOCK_ERROR"

    @pytest.mark.asyncio
    async def test_quantity_mismatch_fails_conversion(self, api):
        responses = {
            queries.GET_ACTIVE_ORDER: {"activeOrder": None},
            queries.ADD_ITEMS_TO_ORDER: {"addItemsToOrder": {"order": order_payload(lines=(("1", 1),)),
                                                             "errorResults": []}},
        }

        async def fetch(query, variables=None, admin=False, operation="graphql"):
            return responses[query]

        with patch.object(api, "fetch_graphql", AsyncMock(side_effect=fetch)):
            with pytest.raises(ConversionFailureException) as exc_info:
                await api.create_order([OrderLineInputDTO(product_variant_id="1", quantity=2)])

        assert exc_info.value.order_code == "ORD1"

    @pytest.mark.asyncio
    async def test_coupon_rejection_is_not_fatal(self, api):
        responses = {
            queries.GET_ACTIVE_ORDER: {"activeOrder": None},
            queries.ADD_ITEMS_TO_ORDER: {"addItemsToOrder": {"order": order_payload(), "errorResults": []}},
            queries.APPLY_COUPON_CODE: {"applyCouponCode": {"errorCode": "COUPON_CODE_EXPIRED_ERROR",
                                                            "message": "Expired"}},
        }

        async def fetch(query, variables=None, admin=False, operation="graphql"):
            return responses[query]

        with patch.object(api, "fetch_graphql", AsyncMock(side_effect=fetch)):
            order = await api.create_order([OrderLineInputDTO(product_variant_id="1", quantity=2)], "OLD")

        assert order.coupon_codes == []


class TestCreatePayment:

    @pytest.mark.asyncio
    async def test_settled_payment(self, api):
        responses = {
            queries.TRANSITION_TO_ARRANGING_PAYMENT: {"transitionOrderToState": {"code": "ORD1"}},
            queries.ADD_PAYMENT_TO_ORDER: {"addPaymentToOrder": {
                "code": "ORD1", "state": "PaymentSettled",
                "payments": [{"transactionId": "tx_9", "state": "Settled"}]
            }},
        }

        async def fetch(query, variables=None, admin=False, operation="graphql"):
            return responses[query]

        with patch.object(api, "fetch_graphql", AsyncMock(side_effect=fetch)):
            result = await api.create_payment(OrderDTO(id="50", code="ORD1"))

        assert result.success is True
        assert result.transaction_id == "tx_9"

    @pytest.mark.asyncio
    async def test_transition_error(self, api):
        responses = {
            queries.TRANSITION_TO_ARRANGING_PAYMENT: {"transitionOrderToState": {
                "errorCode": "ORDER_STATE_TRANSITION_ERROR", "transitionError": "Order is empty"
            }},
        }

        async def fetch(query, variables=None, admin=False, operation="graphql"):
            return responses[query]

        with patch.object(api, "fetch_graphql", AsyncMock(side_effect=fetch)):
            result = await api.create_payment(OrderDTO(id="50", code="ORD1"))

        assert result.success is False
        assert result.error == "Order is empty"
