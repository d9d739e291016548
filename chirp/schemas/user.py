from pydantic import BaseModel


class TokenPayload(BaseModel):

    sub: str
    exp: int


class PresenceStatus(BaseModel):

    userId: str
    online: bool
