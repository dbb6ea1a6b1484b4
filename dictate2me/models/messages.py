"""Wire messages exchanged with the streaming transcription endpoint."""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


# Client -> Server

class ClientStart(BaseModel):
    type: Literal["start"] = "start"


class ClientAudio(BaseModel):
    type: Literal["audio"] = "audio"
    audio: str  # base64 encoded WAV payload


class ClientStop(BaseModel):
    type: Literal["stop"] = "stop"


# Server -> Client

class ServerTranscription(BaseModel):
    type: Literal["transcription"]
    text: str
    isFinal: bool = False
    sequence: Optional[int] = None


class ServerStatus(BaseModel):
    type: Literal["status"]
    status: Literal["connected", "ready", "stopped"]


class ServerErrorMessage(BaseModel):
    type: Literal["error"]
    message: str = "Unknown server error"


ServerMessage = Union[ServerTranscription, ServerStatus, ServerErrorMessage]

server_message_adapter = TypeAdapter(Annotated[ServerMessage, Field(discriminator="type")])


class BatchTranscriptionResponse(BaseModel):
    """Response body of the batch transcription and upload endpoints."""
    text: str
    audioUrl: Optional[str] = None
    engine: Optional[str] = None
