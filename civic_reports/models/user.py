from uuid import uuid4
from sqlalchemy import Column, String, DateTime
from datetime import datetime
from civic_reports.utils.db import Base

ROLE_CITIZEN = "citizen"
ROLE_AUTHORITY = "authority"


class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=lambda: uuid4().hex)  # user ID (token subject)
    full_name = Column(String(100), nullable=True)
    email = Column(String(255), unique=True, nullable=True, index=True)
    role = Column(String(20), nullable=False, default=ROLE_CITIZEN)  # citizen/authority
    created_at = Column(DateTime, default=datetime.now)  # registration time
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
