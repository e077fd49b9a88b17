from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field


class AdminLogin(BaseModel):
    username: str
    password: str


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    created_at: Optional[datetime] = None


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    price: Annotated[Decimal, Field(gt=0, max_digits=10, decimal_places=2)]
    category_id: Optional[str] = None
    is_active: bool = True


class ProductResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    price: Decimal
    category_id: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
