# models.py
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from eth_utils import is_address, to_checksum_address
from pydantic import AfterValidator, BaseModel


class DeliveryState(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _DELIVERY_ORDER.index(self)

    def advance(self, target: "DeliveryState") -> "DeliveryState":
        """Return whichever of self/target is further along; never moves back."""
        return target if target.rank > self.rank else self


_DELIVERY_ORDER = [DeliveryState.PENDING, DeliveryState.SENT, DeliveryState.DELIVERED, DeliveryState.READ]


class EntryState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


TEMP_ID_PREFIX = "temp-"


# --- store rows ---
class Profile(BaseModel):
    id: str
    username: str
    email: Optional[str] = None
    address: str
    is_encrypted: bool = False
    created_at: int = 0


class Thread(BaseModel):
    id: str
    participant1: str
    participant2: str
    created_at: int = 0
    last_message_at: int = 0

    def has(self, address: str) -> bool:
        return address.lower() in (self.participant1.lower(), self.participant2.lower())

    def other(self, address: str) -> str:
        return self.participant2 if address.lower() == self.participant1.lower() else self.participant1


class MessageRow(BaseModel):
    id: str
    thread_id: str
    sender: str
    content: str
    created_at: int
    is_encrypted: bool = False
    read: bool = False


# --- client-side entries ---
class Message(BaseModel):
    id: str
    thread_id: str
    sender: str
    content: str  # envelope when is_encrypted, else plaintext
    created_at: int
    is_encrypted: bool = False
    state: EntryState = EntryState.CONFIRMED
    delivery: DeliveryState = DeliveryState.SENT
    seq: int = 0

    @property
    def is_pending(self) -> bool:
        return self.id.startswith(TEMP_ID_PREFIX)

    @property
    def sort_key(self):
        return (self.created_at, self.seq)


class ChatPreview(BaseModel):
    thread_id: str
    participant: str
    participant_username: str
    last_message: str
    timestamp: int
    unread: int = 0


# --- backend request bodies ---
def _checksummed(value: str) -> str:
    if not is_address(value):
        raise ValueError("invalid wallet address")
    return to_checksum_address(value)


# one spelling per wallet, whatever case the caller typed
Address = Annotated[str, AfterValidator(_checksummed)]


class NewProfile(BaseModel):
    username: str
    address: Address
    email: Optional[str] = None
    is_encrypted: bool = False


class NewThread(BaseModel):
    participant1: Address
    participant2: Address


class NewMessage(BaseModel):
    thread_id: str
    sender: Address
    content: str
    is_encrypted: bool = False


class MarkRead(BaseModel):
    ids: List[str]


class RealtimeEvent(BaseModel):
    type: str  # INSERT | UPDATE
    table: str = "messages"
    new: Dict[str, Any]
