from typing import Optional, TypedDict


class UserDocument(TypedDict, total=False):

    _id: str
    username: str
    email: str
    full_name: Optional[str]
