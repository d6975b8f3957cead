from sqlalchemy import Boolean, Column, Integer, String

from bookings.database import Base


class Language(Base):
    __tablename__ = "languages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    language = Column(String(100), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
