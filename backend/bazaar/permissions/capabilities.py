# Overview: Capability codes checked by the service layer.
# Each capability is defined as: (code, description)


class Capability:
    ALLOCATE_POINTS = "ALLOCATE_POINTS"
    DIRECT_SALE = "DIRECT_SALE"
    SELL_POINTS = "SELL_POINTS"
    ISSUE_POINT_CARD = "ISSUE_POINT_CARD"
    MAKE_PAYMENT = "MAKE_PAYMENT"
    TRANSFER_POINTS = "TRANSFER_POINTS"
    TOPUP_FROM_CARD = "TOPUP_FROM_CARD"
    COLLECT_PAYMENT = "COLLECT_PAYMENT"
    REFUND_PAYMENT = "REFUND_PAYMENT"
    MANAGE_MERCHANTS = "MANAGE_MERCHANTS"
    SUBMIT_CASH = "SUBMIT_CASH"
    RECEIVE_SELLER_CASH = "RECEIVE_SELLER_CASH"
    COLLECT_CASH = "COLLECT_CASH"
    GRANT_POINTS = "GRANT_POINTS"
    RESET_PIN = "RESET_PIN"
    VIEW_DEPARTMENT_STATS = "VIEW_DEPARTMENT_STATS"
    VIEW_FINANCE_SUMMARY = "VIEW_FINANCE_SUMMARY"
    RECOMPUTE_STATS = "RECOMPUTE_STATS"


CAPABILITY_DEFINITIONS = [
    (Capability.ALLOCATE_POINTS, "Allocate points to sellers in managed departments"),
    (Capability.DIRECT_SALE, "Sell freshly minted points directly to customers"),
    (Capability.SELL_POINTS, "Resell allocated points to customers"),
    (Capability.ISSUE_POINT_CARD, "Issue bearer point cards"),
    (Capability.MAKE_PAYMENT, "Pay a merchant with points"),
    (Capability.TRANSFER_POINTS, "Transfer points to another customer"),
    (Capability.TOPUP_FROM_CARD, "Absorb a point card into the customer account"),
    (Capability.COLLECT_PAYMENT, "Confirm or cancel payments and redeem cards at a stall"),
    (Capability.REFUND_PAYMENT, "Refund completed payments at an owned stall"),
    (Capability.MANAGE_MERCHANTS, "Create stalls and manage their assistants"),
    (Capability.SUBMIT_CASH, "Hand in physical cash"),
    (Capability.RECEIVE_SELLER_CASH, "Confirm cash handed in by sellers"),
    (Capability.COLLECT_CASH, "Claim and confirm cash from the unclaimed pool"),
    (Capability.GRANT_POINTS, "Grant free points to tagged customers"),
    (Capability.RESET_PIN, "Clear another user's transaction PIN"),
    (Capability.VIEW_DEPARTMENT_STATS, "Read department and manager statistics"),
    (Capability.VIEW_FINANCE_SUMMARY, "Read tenant-wide cash and point summaries"),
    (Capability.RECOMPUTE_STATS, "Trigger a full statistics recompute"),
]
