from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Numeric,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.database.connection import Base


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    description = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    specifications = relationship(
        "CategorySpecification",
        back_populates="category",
        cascade="all, delete-orphan",
        order_by="CategorySpecification.display_order",
    )
    pricing_rules = relationship(
        "CategoryPricingRule",
        back_populates="category",
        cascade="all, delete-orphan",
        order_by="CategoryPricingRule.id",
    )


class CategorySpecification(Base):
    __tablename__ = "category_specifications"
    __table_args__ = (UniqueConstraint("category_id", "slug", name="uq_category_specification_slug"),)

    id = Column(Integer, primary_key=True, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    slug = Column(String, nullable=False)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default="SELECT")  # SELECT / MULTI_SELECT / TEXT / NUMBER / BOOLEAN
    is_required = Column(Boolean, default=False)
    display_order = Column(Integer, default=0)

    category = relationship("Category", back_populates="specifications")
    options = relationship(
        "SpecificationOption",
        back_populates="specification",
        cascade="all, delete-orphan",
        order_by="SpecificationOption.display_order",
    )


class SpecificationOption(Base):
    __tablename__ = "specification_options"

    id = Column(Integer, primary_key=True, index=True)
    specification_id = Column(Integer, ForeignKey("category_specifications.id"), nullable=False, index=True)
    value = Column(String, nullable=False)  # matched by pricing rules
    label = Column(String, nullable=False)  # display only
    display_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)

    specification = relationship("CategorySpecification", back_populates="options")


class CategoryPricingRule(Base):
    __tablename__ = "category_pricing_rules"

    # id doubles as the creation sequence used to break priority ties
    id = Column(Integer, primary_key=True, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    rule_type = Column(String, nullable=False)  # BASE_PRICE / SPECIFICATION_COMBINATION / QUANTITY_TIER / ADDON
    # e.g. {"size": "XL"}; missing slug = any value
    specification_values = Column(JSON, default={})
    base_price = Column(Numeric(12, 2), nullable=True)
    price_modifier = Column(Numeric(12, 2), nullable=True)
    quantity_multiplier = Column(Boolean, default=True, nullable=False)
    min_quantity = Column(Integer, nullable=True)
    max_quantity = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    priority = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = relationship("Category", back_populates="pricing_rules")
