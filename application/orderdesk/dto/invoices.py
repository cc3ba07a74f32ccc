from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class InvoiceLineItem(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    hsn_code: str = Field("", max_length=20, description="HSN code as printed on the invoice")
    quantity: float = Field(..., ge=0)
    unit_price: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    tax_rate: float = Field(0, ge=0, description="GST rate in percent")


class TaxBreakdown(BaseModel):
    taxable_amount: float = 0
    tax_amount: float = 0


class InvoiceDocument(BaseModel):
    """Invoice content as issued; stored as-is, totals are never recomputed here."""
    invoice_number: str = Field("", max_length=64)
    invoice_date: Optional[str] = None
    party_name: str = ""
    party_address: str = ""
    gstin_buyer: str = Field("", max_length=15)
    transport: str = ""
    irn: str = ""
    ack_no: str = ""
    ack_date: Optional[str] = None
    items: List[InvoiceLineItem] = []
    total_quantity: float = 0
    total_taxable_amount: float = 0
    total_tax: float = 0
    round_off: float = 0
    grand_total: float = 0
    tax_breakdown: Dict[str, TaxBreakdown] = Field(default_factory=dict, description="Keyed by tax rate, e.g. '18'")

    # file metadata filled in on upload
    file_name: Optional[str] = None
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None


class InvoiceUrlResponse(BaseModel):
    order_id: str
    invoice_key: str
    url: str
    expires_in: int
