"""SQLAlchemy ORM model for invoice line items - separate table with foreign key to the invoice"""

from sqlalchemy import Column, String, Integer, Numeric, ForeignKey, Index

from .database import Base


class InvoiceLineItem(Base):
    """Line item table; breakdown columns are derived and rewritten on every mutation"""
    __tablename__ = "pi_products"

    id = Column(Integer, primary_key=True, autoincrement=True)

    invoice_id = Column(Integer, ForeignKey("pi_invoices.id", ondelete="CASCADE"), nullable=False)
    company_id = Column(Integer, nullable=False)
    line_number = Column(Integer, nullable=False)

    # User input
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    product_name = Column(String, nullable=True)
    quantity = Column(Numeric(18, 4), nullable=False, default=0)
    unit = Column(String(50), nullable=True)
    rate = Column(Numeric(18, 4), nullable=False, default=0)

    # Derived
    total = Column(Numeric(18, 2), nullable=False, default=0)
    total_weight = Column(Numeric(18, 4), nullable=False, default=0)
    calculated_boxes = Column(Numeric(18, 4), nullable=True)
    calculated_pallets = Column(Numeric(18, 4), nullable=True)
    total_cbm = Column(Numeric(18, 4), nullable=True)
    breakdown_weight = Column(Numeric(18, 4), nullable=True)
    gross_weight_per_box = Column(Numeric(18, 4), nullable=True)

    __table_args__ = (
        Index('ix_pi_products_invoice_line', 'invoice_id', 'line_number'),
    )
