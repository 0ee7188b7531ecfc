"""Call and message record models with hardened XML I/O."""

from phonearchive.records.calls import Call, CallType, read_calls, write_calls
from phonearchive.records.partitions import PartitionReader
from phonearchive.records.sms import (
    MMS,
    SMS,
    Message,
    MessageType,
    MMSAddress,
    MMSPart,
    attachment_references,
    read_messages,
    write_messages,
)

__all__ = [
    "Call",
    "CallType",
    "MMS",
    "MMSAddress",
    "MMSPart",
    "Message",
    "MessageType",
    "PartitionReader",
    "SMS",
    "attachment_references",
    "read_calls",
    "read_messages",
    "write_calls",
    "write_messages",
]
