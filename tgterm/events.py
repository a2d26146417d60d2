"""Inbound chat events as seen by the core."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class InboundEvent:
    sender_id: int
    target: int  # chat to reply to
    text: str = ""
    is_callback: bool = False
    callback_id: str = ""
    callback_data: str = ""
    message_id: int = 0  # message the callback button belongs to
    sender_name: str = ""

    @classmethod
    def message(cls, sender_id: int, target: int, text: str, **kwargs) -> InboundEvent:
        return cls(sender_id=sender_id, target=target, text=text, **kwargs)

    @classmethod
    def callback(
        cls, sender_id: int, target: int, callback_id: str, data: str, message_id: int,
        **kwargs,
    ) -> InboundEvent:
        return cls(
            sender_id=sender_id,
            target=target,
            is_callback=True,
            callback_id=callback_id,
            callback_data=data,
            message_id=message_id,
            **kwargs,
        )
