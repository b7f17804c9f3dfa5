from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from db.base import Base


class Category(Base):
    __tablename__ = 'categories'
    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)

    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = 'products'
    id = Column(String(36), primary_key=True)
    brand = Column(String(100), nullable=False)
    model = Column(String(150), nullable=False)
    year = Column(Integer, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    min_price = Column(Numeric(10, 2), nullable=True)
    max_price = Column(Numeric(10, 2), nullable=True)
    stock = Column(Integer, nullable=True)
    barcode = Column(String(64), nullable=True)
    category_id = Column(Integer, ForeignKey('categories.id'), nullable=True)
    storage = Column(Integer, nullable=True)
    ram = Column(Integer, nullable=True)

    category = relationship("Category", back_populates="products")
    units = relationship("ProductUnit", back_populates="product")


class ProductUnit(Base):
    __tablename__ = 'product_units'
    __table_args__ = (
        CheckConstraint("battery_level BETWEEN 0 AND 100", name="ck_product_units_battery"),
        CheckConstraint("status IN ('available', 'sold', 'damaged')", name="ck_product_units_status"),
    )
    id = Column(String(36), primary_key=True)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False)
    serial_number = Column(String(64), unique=True, nullable=False)
    price = Column(Numeric(10, 2), nullable=True)
    min_price = Column(Numeric(10, 2), nullable=True)
    max_price = Column(Numeric(10, 2), nullable=True)
    color = Column(String(50), nullable=True)
    storage = Column(Integer, nullable=True)
    ram = Column(Integer, nullable=True)
    battery_level = Column(Integer, nullable=True)
    barcode = Column(String(64), unique=True, nullable=True)
    status = Column(String(20), nullable=False, default="available")
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    product = relationship("Product", back_populates="units")
