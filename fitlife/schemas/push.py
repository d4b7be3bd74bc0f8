from pydantic import BaseModel, ConfigDict, Field


class PushKeys(BaseModel):
    p256dh: str
    auth: str


class PushSubscribeRequest(BaseModel):
    """Body posted by the client right after the device registration succeeded."""
    model_config = ConfigDict(populate_by_name=True)

    endpoint: str = Field(min_length=1)
    keys: PushKeys
    device_info: dict | None = Field(default=None, alias="deviceInfo")


class PushUnsubscribeRequest(BaseModel):
    endpoint: str = Field(min_length=1)


class PushSubscriptionResponse(BaseModel):
    id: int
    endpoint: str
    is_active: bool


class VapidKeyResponse(BaseModel):
    publicKey: str
