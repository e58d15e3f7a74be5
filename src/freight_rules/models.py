from __future__ import annotations
from typing import Any, Optional
import datetime
from decimal import Decimal

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import JSON, String, Boolean, Numeric, Date, Integer, Text, ForeignKey
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class ShippingCarrier(Base):
    __tablename__ = "shipping_carriers"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True)
    name: Mapped[str] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class CarrierCategoryGroup(Base):
    """Administrator-defined bucket of vehicle categories for one carrier."""

    __tablename__ = "carrier_category_groups"

    id: Mapped[int] = mapped_column(primary_key=True)
    carrier_id: Mapped[int] = mapped_column(ForeignKey("shipping_carriers.id", ondelete="CASCADE"))
    code: Mapped[str] = mapped_column(String(64))
    display_name: Mapped[Optional[str]] = mapped_column(String(200))
    priority: Mapped[int] = mapped_column(Integer, default=0)
    effective_from: Mapped[Optional[datetime.date]] = mapped_column(Date)
    effective_to: Mapped[Optional[datetime.date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    members: Mapped[list["CarrierCategoryGroupMember"]] = relationship(
        back_populates="group", cascade="all, delete-orphan"
    )


class CarrierCategoryGroupMember(Base):
    __tablename__ = "carrier_category_group_members"

    id: Mapped[int] = mapped_column(primary_key=True)
    carrier_category_group_id: Mapped[int] = mapped_column(
        ForeignKey("carrier_category_groups.id", ondelete="CASCADE")
    )
    vehicle_category: Mapped[str] = mapped_column(String(64))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    group: Mapped[CarrierCategoryGroup] = relationship(back_populates="members")


class CarrierPortGroup(Base):
    __tablename__ = "carrier_port_groups"

    id: Mapped[int] = mapped_column(primary_key=True)
    carrier_id: Mapped[int] = mapped_column(ForeignKey("shipping_carriers.id", ondelete="CASCADE"))
    code: Mapped[str] = mapped_column(String(64))
    display_name: Mapped[Optional[str]] = mapped_column(String(200))
    effective_from: Mapped[Optional[datetime.date]] = mapped_column(Date)
    effective_to: Mapped[Optional[datetime.date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    members: Mapped[list["CarrierPortGroupMember"]] = relationship(
        back_populates="group", cascade="all, delete-orphan"
    )


class CarrierPortGroupMember(Base):
    __tablename__ = "carrier_port_group_members"

    id: Mapped[int] = mapped_column(primary_key=True)
    carrier_port_group_id: Mapped[int] = mapped_column(
        ForeignKey("carrier_port_groups.id", ondelete="CASCADE")
    )
    port_id: Mapped[int] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    group: Mapped[CarrierPortGroup] = relationship(back_populates="members")


class ScopedRuleMixin:
    """
    Columns shared by every carrier rule table:
      - carrier_id: mandatory owner
      - *_ids / *_names / *_classes: JSON lists, NULL = any
      - priority + effective window + is_active
    """

    carrier_id: Mapped[int] = mapped_column(ForeignKey("shipping_carriers.id", ondelete="CASCADE"))
    port_ids: Mapped[Optional[list[Any]]] = mapped_column(JsonType)
    port_group_ids: Mapped[Optional[list[Any]]] = mapped_column(JsonType)
    vehicle_categories: Mapped[Optional[list[Any]]] = mapped_column(JsonType)
    category_group_ids: Mapped[Optional[list[Any]]] = mapped_column(JsonType)
    vessel_names: Mapped[Optional[list[Any]]] = mapped_column(JsonType)
    vessel_classes: Mapped[Optional[list[Any]]] = mapped_column(JsonType)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    effective_from: Mapped[Optional[datetime.date]] = mapped_column(Date)
    effective_to: Mapped[Optional[datetime.date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class CarrierAcceptanceRule(ScopedRuleMixin, Base):
    __tablename__ = "carrier_acceptance_rules"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(200))

    min_length_cm: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    min_width_cm: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    min_height_cm: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    min_cbm: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    min_weight_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    max_length_cm: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    max_width_cm: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    max_height_cm: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    max_cbm: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    max_weight_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    min_is_hard: Mapped[bool] = mapped_column(Boolean, default=True)

    soft_max_height_cm: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    soft_height_requires_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    soft_max_weight_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    soft_weight_requires_approval: Mapped[bool] = mapped_column(Boolean, default=False)

    must_be_empty: Mapped[bool] = mapped_column(Boolean, default=False)
    must_be_self_propelled: Mapped[bool] = mapped_column(Boolean, default=False)

    notes: Mapped[Optional[str]] = mapped_column(Text)


class CarrierClassificationBand(ScopedRuleMixin, Base):
    __tablename__ = "carrier_classification_bands"

    id: Mapped[int] = mapped_column(primary_key=True)
    outcome_vehicle_category: Mapped[str] = mapped_column(String(64))
    min_cbm: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    max_cbm: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    max_height_cm: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    rule_logic: Mapped[str] = mapped_column(String(8), default="AND")


class CarrierTransformRule(ScopedRuleMixin, Base):
    __tablename__ = "carrier_transform_rules"

    id: Mapped[int] = mapped_column(primary_key=True)
    transform_code: Mapped[str] = mapped_column(String(64))
    params: Mapped[Optional[dict[str, Any]]] = mapped_column(JsonType)


class CarrierSurchargeRule(ScopedRuleMixin, Base):
    __tablename__ = "carrier_surcharge_rules"

    id: Mapped[int] = mapped_column(primary_key=True)
    event_code: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(200))
    calc_mode: Mapped[str] = mapped_column(String(32))
    params: Mapped[Optional[dict[str, Any]]] = mapped_column(JsonType)


class CarrierSurchargeArticleMap(ScopedRuleMixin, Base):
    __tablename__ = "carrier_surcharge_article_maps"

    id: Mapped[int] = mapped_column(primary_key=True)
    event_code: Mapped[str] = mapped_column(String(64))
    article_id: Mapped[int] = mapped_column(Integer)
    qty_mode: Mapped[Optional[str]] = mapped_column(String(32))
