from pydantic import BaseModel, Field


class LoginIn(BaseModel):
    username: str = Field(min_length=1)
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "Bearer"


class MeOut(BaseModel):
    sub: str
    username: str
    permissions: list[str] = []
