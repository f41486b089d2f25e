"""Request bodies accepted by the billing endpoints.

Field aliases match the camelCase JSON the web client sends.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class CheckoutRequest(_Request):
    price_id: str = Field(..., alias="priceId", min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    return_url: Optional[str] = Field(default=None, alias="returnUrl")


class PortalRequest(_Request):
    customer_id: str = Field(..., alias="customerId", min_length=1)
    return_url: Optional[str] = Field(default=None, alias="returnUrl")


class CancelRequest(_Request):
    subscription_id: str = Field(..., alias="subscriptionId", min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)
