# lock event models: keypad unlock notifications from the lock vendor cloud

from typing import Optional
from pydantic import BaseModel, Field

# vendor record type for "unlocked with keypad password"
RECORD_TYPE_KEYPAD_UNLOCK = 2


class LockRecordEvent(BaseModel):
    lock_id: str = Field(..., alias="lockId", min_length=1)
    keyboard_pwd: str = Field(..., alias="keyboardPwd", min_length=1)
    record_type: int = Field(..., alias="recordType")
    date: int = Field(..., description="event time, unix milliseconds")
    username: Optional[str] = None

    model_config = {"populate_by_name": True}


class LockRecordResult(BaseModel):
    success: bool = True
    message: str
    consumed: bool = False
