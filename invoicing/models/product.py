from __future__ import annotations
from decimal import Decimal
from pydantic import Field
from typing import Optional
from .common import MAX_UNIT_PRICE, Owned


class Product(Owned):
  name: str = Field(min_length=2)
  description: str = ""
  unit_price: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_UNIT_PRICE)
  # en pourcentage (0..100), informatif: la facture applique le taux global
  tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
