from pydantic import BaseModel, Field


class RegisterUser(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=1)


class RegisterResponse(BaseModel):
    message: str
    userId: int


class LoginRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class UserSummary(BaseModel):
    id: int
    username: str


class LoginResponse(BaseModel):
    message: str
    token: str
    user: UserSummary


class CurrentUser(UserSummary):
    email: str
