"""Room records as stored in the state store (camelCase JSON)"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _StoredModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class RoomMetadata(_StoredModel):
    """``room:{roomId}:metadata``"""

    room_id: str
    host_user_id: str
    members: list[str] = Field(default_factory=list)
    created_at: int  # ms since epoch

    def summary(self) -> dict:
        return {
            "roomId": self.room_id,
            "hostUserId": self.host_user_id,
            "memberCount": len(self.members),
            "createdAt": self.created_at,
        }


class RoomCodeMapping(_StoredModel):
    """``roomCode:{code}``"""

    room_id: str
    host_user_id: str
