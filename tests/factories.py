"""Record builders for tests."""
from datetime import date, datetime

from adapters.records import ChannelRecord, MessageRecord, ReactionRecord, UserRecord
from engagement.dates import epoch_bounds

TODAY = date(2024, 1, 10)


def ts_on(day: date, seconds: int = 0) -> str:
    """Slack ts ``seconds`` after midnight UTC of ``day``."""
    return f"{epoch_bounds(day, day)[0] + seconds:.6f}"


def channel(channel_id: str, name: str = None, is_member: bool = True) -> ChannelRecord:
    return ChannelRecord(id=channel_id, name=name or channel_id.lower(), is_member=is_member)


def user(user_id: str, name: str = None, is_bot: bool = False, deleted: bool = False) -> UserRecord:
    return UserRecord(id=user_id, name=name or user_id.lower(), is_bot=is_bot, deleted=deleted)


def message(
    ts: str,
    channel_id: str = "C1",
    user_id: str = "U1",
    text: str = "hello",
    reactions: int = 0,
    thread_ts: str = None,
    reply_count: int = 0,
) -> MessageRecord:
    return MessageRecord(
        ts=ts,
        channel_id=channel_id,
        user_id=user_id,
        text=text,
        thread_ts=thread_ts,
        reply_count=reply_count,
        reactions=[ReactionRecord(name="thumbsup", count=reactions)] if reactions else [],
    )


def at(day: date, hour: int = 12) -> datetime:
    return datetime(day.year, day.month, day.day, hour)
