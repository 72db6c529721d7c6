from pydantic import EmailStr, Field
from .common import Owned


class Client(Owned):
    name: str = Field(min_length=2)
    email: EmailStr
    address: str = Field(min_length=10)
    country: str = Field(min_length=2)
    vat_id: str | None = None

    def snapshot(self) -> "Client":
        # copie figée, embarquée dans la facture
        return self.model_copy(deep=True)
