from pydantic import BaseModel, EmailStr

"""
AUTH ROUTE SCHEMA
"""


#Response returned after successful authentication containing the JWT
class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


#Payload used by providers to log in with email and password
class LoginRequest(BaseModel):
    username: EmailStr
    password: str
