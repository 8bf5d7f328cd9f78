"""
SQLAlchemy database models.
These are the authoritative source of truth for the catalog.

Postgres is authoritative for:
- Products (price, stock, vendor data)
- Categories (tree via parent_id)
- Product attributes, images and category links

The Redis facet index is derived from these tables and can always be rebuilt.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from facet_catalog.database import Base


class Category(Base):
    """Catalog category; root categories have no parent."""
    __tablename__ = "categories"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    parent_id = Column(String(64), ForeignKey("categories.id"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    parent = relationship("Category", remote_side=[id])


class Product(Base):
    """
    Product record, keyed by the feed's offer id (stable across imports).
    """
    __tablename__ = "products"

    id = Column(String(64), primary_key=True)
    name = Column(String(512), nullable=False)
    price = Column(Numeric(12, 2), nullable=False, index=True)
    currency_id = Column(String(8))
    stock_quantity = Column(Integer, default=0)
    description = Column(Text)
    vendor = Column(String(255))
    vendor_code = Column(String(255))
    barcode = Column(String(64))
    available = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    attributes = relationship(
        "ProductAttribute",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductAttribute.name",
    )
    images = relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.id",
    )
    categories = relationship(
        "Category",
        secondary="product_categories",
        viewonly=True,
        order_by="Category.id",
    )

    def to_dict(self):
        """Render the product with its attributes, images and categories for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "price": f"{self.price:.2f}" if self.price is not None else None,
            "currency_id": self.currency_id,
            "stock_quantity": self.stock_quantity,
            "description": self.description,
            "vendor": self.vendor,
            "vendor_code": self.vendor_code,
            "barcode": self.barcode,
            "available": bool(self.available),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "attributes": [
                {"name": a.name, "value": a.value, "filter_key": a.filter_key}
                for a in self.attributes
            ],
            "images": [i.image_url for i in self.images],
            "categories": [{"id": c.id, "name": c.name} for c in self.categories],
        }


class ProductAttribute(Base):
    """One named attribute value per product; filter_key is the slug of the name."""
    __tablename__ = "product_attributes"
    __table_args__ = (
        UniqueConstraint("product_id", "name", name="uq_product_attributes_product_name"),
        Index("ix_product_attributes_name_value", "name", "value"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(64), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    value = Column(String(255), nullable=False)
    filter_key = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    product = relationship("Product", back_populates="attributes")


class ProductImage(Base):
    __tablename__ = "product_images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(64), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    image_url = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    product = relationship("Product", back_populates="images")


class ProductCategory(Base):
    __tablename__ = "product_categories"

    product_id = Column(String(64), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True)
    category_id = Column(String(64), ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
