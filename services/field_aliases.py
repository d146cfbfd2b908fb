"""
Header alias lists for every logical field read from marketplace exports.

Lists are ordered by priority; matching is case and punctuation insensitive
(see services.column_resolver.normalize_header).
"""
from __future__ import annotations

ORDER_ID = ("Order ID", "OrderID", "Receipt ID", "ReceiptID", "Order Number", "Order No", "Order #")

ORDER_DATE = ("Sale Date", "Order Date", "Date Paid", "Created At", "CreatedAt", "Date")

STORE_NAME = ("Shop Name", "Store", "Store Name", "Shop")

# Item-level identity
ITEM_NAME = ("Item Name", "Title", "Listing Title", "Product Name", "Product")
SKU = ("SKU", "Item SKU", "Variant SKU")
SIZE = ("Size",)
VARIATION = ("Variations", "Variation", "Variant", "Item Options")
QUANTITY = ("Quantity", "Qty", "Units")

# Item pricing: a line total is already quantity-weighted, a unit price is not.
LINE_TOTAL = ("Item Total", "Line Total", "Line Item Total", "Item Subtotal")
UNIT_PRICE = ("Price", "Unit Price", "Item Price", "ItemPrice")
ITEM_FEES = ("Item Fees", "Item Fee", "Line Fees", "Line Fee")

# Order-level revenue, in fallback-chain priority.
NET_AMOUNT = ("Order Net", "Net Amount", "Net", "Net Sales", "Order Net Amount")
TOTAL_AMOUNT = ("Order Total", "Order Value", "Total", "Gross Amount", "Gross Sales")
ADJUSTED_NET = ("Adjusted Net Order Amount", "Adjusted Net Amount", "Adjusted Net")
ADJUSTED_FEES = ("Adjusted Fees", "Adjusted Fee Amount", "Adjusted Card Processing Fees")

# Named fee groups read from the first summary row. One column per group counts.
FEE_GROUPS = (
    ("Fees", "Total Fees", "Fee", "Fee Amount"),
    ("Card Processing Fees", "Processing Fees", "Processing Fee", "Payment Processing Fee"),
    ("Transaction Fees", "Transaction Fee"),
    ("Listing Fees", "Listing Fee"),
    ("Offsite Ads Fees", "Offsite Ads Fee", "Advertising Fees"),
    ("Regulatory Operating Fee", "Regulatory Operating Fees", "Regulatory Fee"),
)

REGULATORY_FEE = ("Regulatory Operating Fee", "Regulatory Operating Fees", "Regulatory Fee")

NAMED_FEES = tuple(alias for group in FEE_GROUPS for alias in group)

# Payments ledgers expose gross/net per transaction.
PAYMENT_GROSS = ("Gross Amount", "Gross", "Gross Sales", "Amount")
PAYMENT_NET = ("Net Amount", "Net", "Net Sales")

# Shipping label ledger (simple cleaner)
LABEL_TYPE = ("Type", "Transaction Type", "Entry Type")
LABEL_DATE = ("Date", "Created Date", "Ship Date")
LABEL_DESCRIPTION = ("Description", "Details", "Memo")
LABEL_TOTAL = ("Total", "Amount", "Cost")

# Shipping label ledger (detailed extractor)
LABEL_ID = ("Label ID", "LabelID", "Shipment ID", "Label Number")
LABEL_BATCH = ("Batch", "Batch ID", "BatchID")
LABEL_CARRIER = ("Carrier", "Provider")
LABEL_SERVICE = ("Service", "Service Level", "Mail Class")
LABEL_SHIP_DATE = ("Ship Date", "Created Date", "Date", "Label Date")
LABEL_TO_NAME = ("To Name", "Recipient", "Recipient Name", "Name")
LABEL_ADDRESS1 = ("Address 1", "Address1", "Address Line 1", "Street", "Address")
LABEL_CITY = ("City",)
LABEL_STATE = ("State", "Province", "Region")
LABEL_POSTAL = ("Zip", "ZIP Code", "Postal Code", "Postcode")
LABEL_COUNTRY = ("Country",)
LABEL_TRACKING = ("Tracking Number", "Tracking", "Tracking #", "TrackingNumber")
LABEL_REFERENCE = ("Reference", "Reference 1", "Order Reference", "Order Number", "Order ID")
LABEL_NOTES = ("Notes", "Note", "Description", "Memo")
LABEL_WEIGHT = ("Weight", "Weight (oz)", "Weight (lb)")
LABEL_DIMENSIONS = ("Dimensions", "Package Dimensions", "Package")
LABEL_AMOUNT = ("Total", "Amount", "Cost", "Label Cost", "Postage")
LABEL_CURRENCY = ("Currency",)
LABEL_STORE = ("Store", "Store ID", "Shop")
