# backend/models/users.py
from sqlalchemy import Column, Integer, String
from database import Base

# Represents a user account; owns products and acts on stock movements.
# Accounts and credentials are managed by the identity service.
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=True)
    role = Column(String, nullable=False, default="WAREHOUSE")
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
