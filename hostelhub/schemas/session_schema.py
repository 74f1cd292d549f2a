from pydantic import BaseModel, Field
from typing import Any, Dict, Optional

class SessionUser(BaseModel):
    """User resolved from the auth provider's session token."""
    id: str
    email: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

class TokenData(BaseModel):
    sub: Optional[str] = None
    email: Optional[str] = None
    user_metadata: Optional[Dict[str, Any]] = None
