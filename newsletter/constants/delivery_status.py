from enum import Enum


class DeliveryStatus(Enum):
    pending = "pending"
    sent = "sent"
    failed = "failed"
    bounced = "bounced"
