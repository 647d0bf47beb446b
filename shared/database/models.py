"""Modelos SQLAlchemy del núcleo de tickets y escaneos"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Text, false
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from shared.database.connection import Base


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(String(32), primary_key=True)  # Id opaco generado en la emisión
    user_id = Column(String, nullable=False, index=True)  # Jugador dueño del ticket
    vendor_id = Column(String, nullable=False, index=True)  # Vendedor emisor
    game_id = Column(String, nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False, server_default="0")
    currency = Column(String, nullable=False, server_default="GHS")

    # Números para ingreso manual (normalizados, sin guiones)
    ticket_number = Column(String, nullable=True)  # Formato impreso: 123-456
    number_simple = Column(String, nullable=True, index=True)  # 123456
    number_readable = Column(String, nullable=True, index=True)  # LT2024A3K7M9

    status = Column(String, nullable=False, server_default="valid")  # valid, used, expired
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_scan_at = Column(DateTime(timezone=True), nullable=True)
    last_scan_by = Column(String, nullable=True)  # player, vendor

    # Registro de canje (solo cuando status = used, inmutable una vez escrito)
    redemption_vendor_id = Column(String, nullable=True)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    redemption_device = Column(String, nullable=True)  # web, mobile
    redemption_method = Column(String, nullable=True)  # qr, id, manual

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    coupon = relationship("TicketCoupon", back_populates="ticket", cascade="all, delete-orphan", uselist=False)


class TicketCoupon(Base):
    """
    Cupón adjunto a un ticket
    Se muestra al jugador cuando escanea un ticket válido
    """
    __tablename__ = "ticket_coupons"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    ticket_id = Column(String(32), ForeignKey("tickets.id"), nullable=False, unique=True)
    code = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    discount_percent = Column(Integer, nullable=True)
    shop_name = Column(String, nullable=True)
    used = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    ticket = relationship("Ticket", back_populates="coupon")


class ScanEvent(Base):
    """
    Auditoría de escaneos (append-only)
    Un registro por cada request de escaneo, sin importar el resultado
    """
    __tablename__ = "scan_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    ticket_id = Column(String, nullable=True, index=True)  # NULL si no se pudo resolver el ticket
    scanned_by = Column(String, nullable=False)  # player, vendor
    user_id = Column(String, nullable=False, index=True)
    vendor_id = Column(String, nullable=True)
    device = Column(String, nullable=False)
    app_version = Column(String, nullable=True)
    method = Column(String, nullable=False, server_default="qr")  # qr, id, manual
    result = Column(String, nullable=False)  # VALIDATED, VALID, ALREADY_USED, EXPIRED, INVALID
    ip = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
