ORDER_FIELDS = """
    id
    code
    state
    totalWithTax
    couponCodes
    lines {
        id
        quantity
        unitPriceWithTax
        productVariant { id }
    }
"""

ERROR_RESULT_FIELDS = """
    ... on ErrorResult {
        errorCode
        message
    }
"""

GET_VARIANT_STOCK = """
query GetVariantStock($ids: [String!]!, $take: Int!) {
    productVariants(options: { filter: { id: { in: $ids } }, take: $take }) {
        items {
            id
            name
            stockLevel
            priceWithTax
            currencyCode
            product { id }
        }
    }
}
"""

GET_PRODUCT_STOCK = """
query GetProductStock($slug: String!) {
    product(slug: $slug) {
        id
        variants {
            id
            stockLevel
        }
    }
}
"""

FIND_PROMOTIONS_BY_COUPON = """
query FindPromotionsByCoupon($code: String!) {
    promotions(options: { filter: { couponCode: { eq: $code } }, sort: { id: DESC } }) {
        items {
            id
            name
            description
            couponCode
            enabled
            startsAt
            endsAt
            usageLimit
            perCustomerUsageLimit
            conditions { code args { name value } }
            actions { code args { name value } }
        }
    }
}
"""

GET_CUSTOMER = """
query GetCustomer($id: ID!) {
    customer(id: $id) {
        id
        groups { id }
        customFields { activeVerifications }
    }
}
"""

GET_ACTIVE_ORDER = f"""
query GetActiveOrder {{
    activeOrder {{
        {ORDER_FIELDS}
    }}
}}
"""

REMOVE_ALL_ORDER_LINES = f"""
mutation RemoveAllOrderLines {{
    removeAllOrderLines {{
        ... on Order {{ id }}
        {ERROR_RESULT_FIELDS}
    }}
}}
"""

ADD_ITEMS_TO_ORDER = f"""
mutation AddItemsToOrder($inputs: [AddItemInput!]!) {{
    addItemsToOrder(inputs: $inputs) {{
        order {{
            {ORDER_FIELDS}
        }}
        errorResults {{
            errorCode
            message
        }}
    }}
}}
"""

ADD_ITEM_TO_ORDER = f"""
mutation AddItemToOrder($productVariantId: ID!, $quantity: Int!) {{
    addItemToOrder(productVariantId: $productVariantId, quantity: $quantity) {{
        ... on Order {{
            {ORDER_FIELDS}
        }}
        {ERROR_RESULT_FIELDS}
    }}
}}
"""

APPLY_COUPON_CODE = f"""
mutation ApplyCouponCode($couponCode: String!) {{
    applyCouponCode(couponCode: $couponCode) {{
        ... on Order {{
            {ORDER_FIELDS}
        }}
        {ERROR_RESULT_FIELDS}
    }}
}}
"""

TRANSITION_TO_ARRANGING_PAYMENT = """
mutation TransitionToArrangingPayment {
    transitionOrderToState(state: "ArrangingPayment") {
        ... on Order { id state }
        ... on OrderStateTransitionError {
            errorCode
            message
            transitionError
        }
    }
}
"""

ADD_PAYMENT_TO_ORDER = """
mutation AddPaymentToOrder($input: PaymentInput!) {
    addPaymentToOrder(input: $input) {
        ... on Order {
            code
            state
            payments { id transactionId state }
        }
        ... on ErrorResult {
            errorCode
            message
        }
    }
}
"""
