from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    connection_id: str
    sender_id: str
    body: str
    created_at: datetime
