"""
User Model - customers, translators and admins in one table

Translator-only data lives alongside: spoken languages in
`user_languages` and customer blocks in `users_blacklist`
(user_id = blocking customer, translator_id = blocked translator).
"""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from bookings.database import Base


class User(Base):
    """
    Account entity.

    Attributes:
        user_type: Role (customer, translator, admin)
        consumer_type: Customer billing category, drives the job type
        translator_type/translator_level: Translator pool and certification
        not_get_emergency/not_get_nighttime/not_get_notification:
            Translator push opt-outs
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_type = Column(String(20), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    mobile = Column(String(50), nullable=True)
    city = Column(String(255), nullable=True)
    gender = Column(String(10), nullable=True)
    suspended = Column(Boolean, nullable=False, default=False)
    consumer_type = Column(String(20), nullable=True)
    customer_type = Column(String(50), nullable=True)
    translator_type = Column(String(20), nullable=True)
    translator_level = Column(String(40), nullable=True)
    not_get_emergency = Column(Boolean, nullable=False, default=False)
    not_get_nighttime = Column(Boolean, nullable=False, default=False)
    not_get_notification = Column(Boolean, nullable=False, default=False)

    languages = relationship("UserLanguage", lazy="selectin", cascade="all, delete-orphan")
    blocked_by = relationship(
        "UsersBlacklist",
        foreign_keys="UsersBlacklist.translator_id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class UserLanguage(Base):
    __tablename__ = "user_languages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    lang_id = Column(Integer, ForeignKey("languages.id"), nullable=False)


class UsersBlacklist(Base):
    __tablename__ = "users_blacklist"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    translator_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
