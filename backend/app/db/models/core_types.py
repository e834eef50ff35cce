import enum


class Role(str, enum.Enum):
    superadmin = "superadmin"
    company = "company"
    branch = "branch"
    supervisor = "supervisor"
    factory = "factory"
    driver = "driver"


class DocumentKind(str, enum.Enum):
    stock_order = "STC"
    instock_entry = "INS"
    return_order = "RET"
    bill = "BIL"


class Stage(str, enum.Enum):
    ordered = "ordered"
    sending = "sending"
    confirmed = "confirmed"
    picked = "picked"
    received = "received"


# normal arrival order; reports and signals walk stages in this order
STAGE_ORDER = (
    Stage.ordered,
    Stage.sending,
    Stage.confirmed,
    Stage.picked,
    Stage.received,
)


class OrderType(str, enum.Enum):
    stock = "stock"
    live = "live"


class StageSignal(str, enum.Enum):
    pending = "pending"
    on_target = "on_target"
    excess = "excess"
    shortfall = "shortfall"


class Variance(str, enum.Enum):
    shortage = "shortage"
    exact = "exact"
    excess = "excess"


class EntryStatus(str, enum.Enum):
    waiting = "waiting"
    approved = "approved"


class ReturnStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class BillStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    cancelled = "cancelled"


class PaymentMethod(str, enum.Enum):
    cash = "cash"
    card = "card"
    upi = "upi"
    other = "other"


class DateBasis(str, enum.Enum):
    created = "created"
    delivery = "delivery"


class ReportKind(str, enum.Enum):
    stock_orders = "stock-orders"
    product_wise = "product-wise"
    category_wise = "category-wise"
    department_wise = "department-wise"
    instock_entries = "instock-entries"
    return_orders = "return-orders"
    branch_wise = "branch-wise"
