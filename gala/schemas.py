from __future__ import annotations

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from gala.models import TableRole
from gala.services.payment_metadata import OrderFlow


class BuyerInfo(BaseModel):
    email: EmailStr
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=40)


class TableInfo(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    internal_name: str | None = Field(default=None, max_length=120)


class CheckoutRequest(BaseModel):
    event_id: int
    product_id: int
    order_flow: OrderFlow
    quantity: int = Field(default=1, ge=1, le=20)
    table_id: int | None = None
    promo_code: str | None = Field(default=None, max_length=64)
    buyer_info: BuyerInfo | None = None
    table_info: TableInfo | None = None

    @model_validator(mode='after')
    def _check_flow_fields(self) -> CheckoutRequest:
        if self.order_flow == OrderFlow.INDIVIDUAL_AT_TABLE and self.table_id is None:
            raise ValueError('table_id is required when buying a seat at a table')
        if self.order_flow in (OrderFlow.FULL_TABLE, OrderFlow.CAPTAIN_COMMITMENT) and self.table_info is None:
            raise ValueError('table_info is required for table purchases')
        return self


class GuestInfo(BaseModel):
    email: EmailStr
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=40)
    display_name: str | None = Field(default=None, max_length=200)


class AddGuestRequest(GuestInfo):
    order_id: int | None = None


class ClaimSeatRequest(GuestInfo):
    pass


class GuestUpdateRequest(BaseModel):
    model_config = ConfigDict(extra='forbid')

    display_name: str | None = Field(default=None, max_length=200)
    dietary_restrictions: dict | None = None
    bidder_number: str | None = Field(default=None, max_length=32)
    auction_registered: bool | None = None


class TransferRequest(BaseModel):
    to_user_id: int | None = None
    to_email: EmailStr | None = None
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=40)
    keep_table: bool = True
    transfer_details: bool = False

    @model_validator(mode='after')
    def _check_recipient(self) -> TransferRequest:
        if self.to_user_id is None and self.to_email is None:
            raise ValueError('Either to_user_id or to_email is required')
        return self


class AddRoleRequest(BaseModel):
    role: TableRole
    user_id: int | None = None
    email: EmailStr | None = None
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)

    @model_validator(mode='after')
    def _check_target(self) -> AddRoleRequest:
        if self.user_id is None and self.email is None:
            raise ValueError('Either user_id or email is required')
        return self


class RemoveRoleRequest(BaseModel):
    user_id: int
    role: TableRole
