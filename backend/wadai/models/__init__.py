from wadai.models.user import User
from wadai.models.credential import UserCredential
from wadai.models.refresh_token import RefreshToken

__all__ = [
    "User",
    "UserCredential",
    "RefreshToken",
]
