from typing import List, Optional

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """
    /users/me 输出结构
    """

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    roles: List[str]
    capabilities: List[str]
