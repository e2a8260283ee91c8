# backend/models/category.py
from sqlalchemy import Column, Integer, String
from database import Base

# Product category; used to group stock valuation
class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False, index=True)
    description = Column(String, nullable=True)
