"""
Grouping of messages into conversations.

A conversation is every message exchanged between exactly two users, keyed by
the ordered pair (min(sender, receiver), max(sender, receiver)). Functions here
are pure and operate on serialized messages as returned by the API, where
`sender` and `receiver` are either `{id, name, role}` objects or plain ids.
"""
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel

ConversationKey = Tuple[str, str]


class ConversationSummary(BaseModel):
    id: str  # the counterpart's user id
    name: str
    role: str
    last_message: dict
    unread_count: int = 0


def _party_id(party) -> Optional[str]:
    if isinstance(party, dict):
        party = party.get("id") or party.get("_id")
    return str(party) if party else None


def _party(party) -> dict:
    return party if isinstance(party, dict) else {}


def _timestamp(message: dict) -> datetime:
    value = message.get("created_at")
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def conversation_key(user_a: str, user_b: str) -> ConversationKey:
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


def group_by_conversation(messages: Iterable[dict]) -> dict:
    """Bucket messages by participant pair, keeping input order inside each bucket."""
    groups = {}
    for message in messages:
        sender_id = _party_id(message.get("sender"))
        receiver_id = _party_id(message.get("receiver"))
        if not sender_id or not receiver_id:
            continue
        groups.setdefault(conversation_key(sender_id, receiver_id), []).append(message)
    return groups


def summarize_conversations(messages: Iterable[dict], user_id: str) -> List[ConversationSummary]:
    """
    One summary per counterpart of `user_id`, most recently active first.

    `unread_count` counts unread messages addressed to `user_id`; messages the
    user sent never count. Messages not involving `user_id` are ignored.
    """
    summaries = {}
    latest = {}
    for key, thread in group_by_conversation(messages).items():
        if user_id not in key:
            continue
        other_id = key[1] if key[0] == user_id else key[0]
        for message in thread:
            outgoing = _party_id(message.get("sender")) == user_id
            other = _party(message.get("receiver") if outgoing else message.get("sender"))
            summary = summaries.get(other_id)
            if summary is None:
                summary = summaries[other_id] = ConversationSummary(
                    id=other_id,
                    name=other.get("name") or "Unknown User",
                    role=other.get("role") or "user",
                    last_message=message,
                )
                latest[other_id] = _timestamp(message)
            elif _timestamp(message) > latest[other_id]:
                summary.last_message = message
                latest[other_id] = _timestamp(message)
            if not outgoing and not message.get("is_read"):
                summary.unread_count += 1

    return sorted(summaries.values(), key=lambda s: latest[s.id], reverse=True)


def unread_for(messages: Iterable[dict], user_id: str) -> List[dict]:
    """Messages addressed to `user_id` that have not been read yet."""
    return [
        m for m in messages
        if _party_id(m.get("receiver")) == user_id and not m.get("is_read")
    ]
