"""
Core constants for the Order Desk application

This module contains the order status values, actor roles, workflow actions
and the shared status groupings used by the state machine and the routes.
"""


class OrderStatus:
    """Order status constants for the fulfilment workflow"""

    ORDER_PLACED = "Order Placed"
    INPROCESSING = "Inprocessing"
    WAREHOUSE_PROCESSING = "Warehouse Processing"
    ADMIN_STOCK_REVIEW = "Admin Stock Review"
    APPROVAL_PENDING = "Approval Pending"
    AWAITING_INVOICE = "Awaiting Invoice"
    INVOICE_VERIFICATION = "Invoice Verification"
    INVOICE_UPLOADED = "Invoice Uploaded"
    CONFIRMED = "Confirmed"
    PACKING = "Packing"
    DISPATCHED = "Dispatched"
    DELIVERED = "Delivered"

    # side states
    REWORK = "Rework"
    CANCELLED = "Cancelled"

    # fixed linear order, used for forward/backward checks
    ORDER = [
        ORDER_PLACED,
        INPROCESSING,
        WAREHOUSE_PROCESSING,
        ADMIN_STOCK_REVIEW,
        APPROVAL_PENDING,
        AWAITING_INVOICE,
        INVOICE_VERIFICATION,
        INVOICE_UPLOADED,
        CONFIRMED,
        PACKING,
        DISPATCHED,
        DELIVERED,
    ]

    ALL = ORDER + [REWORK, CANCELLED]

    # statuses handled by the role-gated workflow; manual override is not allowed from here
    PRE_INVOICE = {
        ORDER_PLACED,
        INPROCESSING,
        WAREHOUSE_PROCESSING,
        ADMIN_STOCK_REVIEW,
        APPROVAL_PENDING,
        AWAITING_INVOICE,
        INVOICE_VERIFICATION,
    }

    # targets reachable through the manual override
    LINEAR_TARGETS = [INVOICE_UPLOADED, CONFIRMED, PACKING, DISPATCHED, DELIVERED]

    # statuses in which the working ledger (updated_items) is exposed
    REVIEW_STATUSES = {
        WAREHOUSE_PROCESSING,
        ADMIN_STOCK_REVIEW,
        APPROVAL_PENDING,
        AWAITING_INVOICE,
        INVOICE_VERIFICATION,
    }

    # item composition is editable only here
    EDITABLE = {ORDER_PLACED}

    REWORKABLE = {INVOICE_UPLOADED, CONFIRMED, PACKING, DISPATCHED}

    TERMINAL = {DELIVERED, CANCELLED}

    @classmethod
    def is_valid(cls, status: str) -> bool:
        return status in cls.ALL

    @classmethod
    def position(cls, status: str) -> int:
        """Index in the linear order; side states sort before everything."""
        try:
            return cls.ORDER.index(status)
        except ValueError:
            return -1


class ActorRole:
    """Roles that may act on an order"""

    SALES = "sales"
    WAREHOUSE = "warehouse"
    ADMIN = "admin"
    MANAGER = "manager"
    OPS = "ops"

    ALL = {SALES, WAREHOUSE, ADMIN, MANAGER, OPS}


class WorkflowAction:
    """Named workflow operations, recorded on every status event"""

    CREATE = "create"
    SEND_TO_WAREHOUSE = "send_to_warehouse"
    REPORT_STOCK = "report_stock"
    STOCK_DECISION = "stock_decision"
    UPLOAD_INVOICE = "upload_invoice"
    REVIEW_INVOICE = "review_invoice"
    MANUAL_ADVANCE = "manual_advance"
    REWORK = "rework"
    CANCEL = "cancel"

    ALL = [CREATE, SEND_TO_WAREHOUSE, REPORT_STOCK, STOCK_DECISION, UPLOAD_INVOICE, REVIEW_INVOICE, MANUAL_ADVANCE, REWORK, CANCEL]


class StockDecision:
    PROCEED = "proceed"
    HOLD = "hold"
    RECHECK = "recheck"

    ALL = {PROCEED, HOLD, RECHECK}


class InvoiceDecision:
    APPROVE = "approve"
    REJECT = "reject"

    ALL = {APPROVE, REJECT}


class ItemActionType:
    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"

    ALL = {ADD, REMOVE, REPLACE}
