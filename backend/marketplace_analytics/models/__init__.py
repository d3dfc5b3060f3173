from marketplace_analytics.models.domain import (
    InvoiceStatus,
    Item,
    ItemRfq,
    MarketplaceInvoice,
    MarketplaceOrder,
    MarketplacePayment,
    MarketplaceQuote,
    OrderHealthStatus,
    OrderStatus,
    PaymentRecordStatus,
    PaymentStatus,
    QuoteStatus,
    RfqStatus,
    SellerProfile,
)

__all__ = [
    "InvoiceStatus",
    "Item",
    "ItemRfq",
    "MarketplaceInvoice",
    "MarketplaceOrder",
    "MarketplacePayment",
    "MarketplaceQuote",
    "OrderHealthStatus",
    "OrderStatus",
    "PaymentRecordStatus",
    "PaymentStatus",
    "QuoteStatus",
    "RfqStatus",
    "SellerProfile",
]
