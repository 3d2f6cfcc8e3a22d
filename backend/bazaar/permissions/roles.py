# Overview: Closed set of role tags and the capabilities each role grants.

from .capabilities import Capability


class Role:
    """Role tags a user may carry. Anything outside ALL_ROLES is rejected."""
    SELLER = "seller"
    SELLER_MANAGER = "sellerManager"
    POINT_SELLER = "pointSeller"
    MERCHANT_OWNER = "merchantOwner"
    MERCHANT_ASSISTANT = "merchantAssistant"
    MERCHANT_MANAGER = "merchantManager"
    CASHIER = "cashier"
    FINANCE_MANAGER = "financeManager"
    CUSTOMER = "customer"
    EVENT_MANAGER = "eventManager"


ALL_ROLES = frozenset({
    Role.SELLER,
    Role.SELLER_MANAGER,
    Role.POINT_SELLER,
    Role.MERCHANT_OWNER,
    Role.MERCHANT_ASSISTANT,
    Role.MERCHANT_MANAGER,
    Role.CASHIER,
    Role.FINANCE_MANAGER,
    Role.CUSTOMER,
    Role.EVENT_MANAGER,
})

# Roles that collect from the unclaimed cash pool.
COLLECTOR_ROLES = (Role.FINANCE_MANAGER, Role.CASHIER)

# Roles that hold physical cash and hand it in through cash submissions,
# in the order used to pick the acting role for a multi-role user.
SUBMITTER_ROLES = (Role.SELLER_MANAGER, Role.POINT_SELLER, Role.SELLER)


ROLE_CAPABILITIES = {
    Role.SELLER: {
        Capability.SELL_POINTS,
        Capability.SUBMIT_CASH,
    },
    Role.SELLER_MANAGER: {
        Capability.ALLOCATE_POINTS,
        Capability.DIRECT_SALE,
        Capability.SUBMIT_CASH,
        Capability.RECEIVE_SELLER_CASH,
        Capability.VIEW_DEPARTMENT_STATS,
    },
    Role.POINT_SELLER: {
        Capability.DIRECT_SALE,
        Capability.ISSUE_POINT_CARD,
        Capability.SUBMIT_CASH,
    },
    Role.MERCHANT_OWNER: {
        Capability.COLLECT_PAYMENT,
        Capability.REFUND_PAYMENT,
    },
    Role.MERCHANT_ASSISTANT: {
        Capability.COLLECT_PAYMENT,
    },
    Role.MERCHANT_MANAGER: {
        Capability.MANAGE_MERCHANTS,
    },
    Role.CASHIER: {
        Capability.COLLECT_CASH,
    },
    Role.FINANCE_MANAGER: {
        Capability.COLLECT_CASH,
        Capability.VIEW_DEPARTMENT_STATS,
        Capability.VIEW_FINANCE_SUMMARY,
        Capability.RECOMPUTE_STATS,
    },
    Role.CUSTOMER: {
        Capability.MAKE_PAYMENT,
        Capability.TRANSFER_POINTS,
        Capability.TOPUP_FROM_CARD,
    },
    Role.EVENT_MANAGER: {
        Capability.GRANT_POINTS,
        Capability.RESET_PIN,
        Capability.VIEW_DEPARTMENT_STATS,
        Capability.VIEW_FINANCE_SUMMARY,
        Capability.RECOMPUTE_STATS,
    },
}
