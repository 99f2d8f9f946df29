"""Slack adapter: fetches channels, users and message history."""
import asyncio
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import ValidationError
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from config import Config
from utils.backoff import async_retrying
from utils.logger import get_logger
from utils.rate_limiter import RateLimiter, get_rate_limiter
from .errors import RateLimited, SourceError, SourceErrorKind, SourceUnavailable, unauthorized
from .records import ChannelRecord, MessageRecord, ReactionRecord, UserRecord

logger = get_logger(__name__)

SOURCE = "slack"

AUTH_ERRORS = {
    "invalid_auth",
    "not_authed",
    "account_inactive",
    "token_revoked",
    "token_expired",
}


def normalize_channel(payload: Dict[str, Any]) -> ChannelRecord:
    """Map a conversations.list / conversations.info item to a ChannelRecord."""
    topic = payload.get("topic") or {}
    purpose = payload.get("purpose") or {}
    return ChannelRecord(
        id=payload["id"],
        name=payload.get("name") or payload["id"],
        is_member=payload.get("is_member", False),
        num_members=payload.get("num_members"),
        topic=topic.get("value") if isinstance(topic, dict) else topic,
        purpose=purpose.get("value") if isinstance(purpose, dict) else purpose,
    )


def normalize_user(payload: Dict[str, Any]) -> UserRecord:
    """Map a users.list member to a UserRecord."""
    profile = payload.get("profile") or {}
    return UserRecord(
        id=payload["id"],
        name=payload.get("name") or payload["id"],
        real_name=payload.get("real_name") or profile.get("real_name"),
        display_name=profile.get("display_name") or payload.get("display_name"),
        is_bot=payload.get("is_bot", False) or payload["id"] == "USLACKBOT",
        deleted=payload.get("deleted", False),
    )


def normalize_message(payload: Dict[str, Any], channel_id: str) -> MessageRecord:
    """Map a conversations.history item to a MessageRecord."""
    reactions = [
        ReactionRecord(
            name=reaction["name"],
            count=reaction.get("count", len(reaction.get("users", []))),
            users=reaction.get("users", []),
        )
        for reaction in payload.get("reactions") or []
    ]
    return MessageRecord(
        ts=payload["ts"],
        channel_id=channel_id,
        user_id=payload.get("user"),
        text=payload.get("text"),
        thread_ts=payload.get("thread_ts"),
        reply_count=payload.get("reply_count") or 0,
        reactions=reactions,
    )


def _normalize_all(items, normalizer, label: str, *args) -> list:
    """Normalize a list of payloads, skipping the malformed ones."""
    records = []
    for item in items:
        try:
            records.append(normalizer(item, *args))
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Skipping malformed {label} {item.get('id') or item.get('ts')}: {e}")
    return records


class SlackAdapter:
    """Reads Slack data through the Web API."""

    def __init__(
        self,
        client: Optional[AsyncWebClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        page_size: int = Config.DEFAULT_PAGE_SIZE,
    ):
        """Initialize Slack adapter."""
        self.client = client or AsyncWebClient(token=Config.SLACK_BOT_TOKEN)
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.page_size = page_size

    def _classify(self, error: Exception, method_name: str, scope: Optional[str]) -> SourceError:
        """Turn a client failure into a typed source error."""
        if isinstance(error, SlackApiError):
            response = error.response
            code = response.get("error", "unknown_error")
            channel = scope.split(":", 1)[-1] if scope else "this channel"

            if response.status_code == 429 or code == "ratelimited":
                retry_after = response.headers.get("Retry-After")
                return RateLimited(
                    f"Slack rate limited {method_name}",
                    SOURCE,
                    scope,
                    retry_after=float(retry_after) if retry_after else None,
                )
            if code == "not_in_channel":
                return unauthorized(
                    f"Bot is not a member of channel {channel}. Add the bot to the channel "
                    f"first by typing '/invite @{Config.SLACK_BOT_NAME}' in the channel.",
                    SOURCE,
                    scope,
                )
            if code == "channel_not_found":
                return unauthorized(
                    f"Channel {channel} was not found. If it is private, invite "
                    f"@{Config.SLACK_BOT_NAME} so the bot can see it.",
                    SOURCE,
                    scope,
                )
            if code == "missing_scope":
                needed = response.get("needed", "unknown")
                return unauthorized(
                    f"Slack token is missing the '{needed}' scope required by {method_name}. "
                    f"Add it under OAuth & Permissions and reinstall the app.",
                    SOURCE,
                    scope,
                )
            if code in AUTH_ERRORS:
                return unauthorized(
                    f"Slack rejected the bot token ({code}). Check SLACK_BOT_TOKEN.",
                    SOURCE,
                    scope,
                )
            return SourceError(f"Slack API error in {method_name}: {code}", SOURCE, scope)

        if isinstance(error, asyncio.TimeoutError):
            return SourceUnavailable(
                f"Slack timed out on {method_name}", SOURCE, scope, kind=SourceErrorKind.TIMEOUT
            )
        if isinstance(error, (aiohttp.ClientError, ConnectionError)):
            return SourceUnavailable(f"Cannot reach Slack for {method_name}: {error}", SOURCE, scope)

        return SourceError(f"Unexpected error in {method_name}: {error}", SOURCE, scope)

    async def _call_api(
        self,
        method_name: str,
        api_method: str,
        scope: Optional[str] = None,
        **kwargs
    ) -> Dict[str, Any]:
        """Call Slack API with rate limiting and retries."""
        async for attempt in async_retrying(
            max_attempts=Config.MAX_RETRIES, exceptions=(RateLimited,)
        ):
            with attempt:
                await self.rate_limiter.wait_if_needed(method_name)
                try:
                    response = await getattr(self.client, api_method)(**kwargs)
                except Exception as e:
                    error = self._classify(e, method_name, scope)
                    logger.error(f"Slack API error in {method_name}: {error}")
                    raise error from e
                return response.data if hasattr(response, "data") else response

    async def _paginate(
        self,
        method_name: str,
        api_method: str,
        result_key: str,
        scope: Optional[str] = None,
        **kwargs
    ) -> List[Dict[str, Any]]:
        """Paginate through API results."""
        cursor = None
        items: List[Dict[str, Any]] = []

        while True:
            params = {**kwargs}
            if cursor:
                params["cursor"] = cursor

            response = await self._call_api(method_name, api_method, scope=scope, **params)
            items.extend(response.get(result_key, []))

            metadata = response.get("response_metadata") or {}
            cursor = metadata.get("next_cursor", "")

            if not cursor:
                logger.info(f"Pagination complete for {method_name}. Total items: {len(items)}")
                return items

            logger.debug(f"Fetched {len(items)} items so far from {method_name}")

    async def get_channels(self) -> List[ChannelRecord]:
        """List public and private channels, archived ones excluded."""
        channels = await self._paginate(
            "conversations.list",
            "conversations_list",
            "channels",
            scope="slack:channels",
            types="public_channel,private_channel",
            exclude_archived=True,
            limit=self.page_size,
        )
        return _normalize_all(channels, normalize_channel, "channel")

    async def get_channel_info(self, channel_id: str) -> ChannelRecord:
        """Fetch one channel."""
        response = await self._call_api(
            "conversations.info",
            "conversations_info",
            scope=f"channel:{channel_id}",
            channel=channel_id,
        )
        return normalize_channel(response.get("channel", {}))

    async def get_users(self) -> List[UserRecord]:
        """List every workspace member, bots and deactivated users included."""
        users = await self._paginate(
            "users.list",
            "users_list",
            "members",
            scope="slack:users",
            limit=self.page_size,
        )
        return _normalize_all(users, normalize_user, "user")

    async def get_channel_messages(
        self,
        channel_id: str,
        oldest: Optional[float] = None,
        latest: Optional[float] = None,
    ) -> List[MessageRecord]:
        """Fetch channel history between ``oldest`` and ``latest`` (epoch seconds)."""
        params: Dict[str, Any] = {"channel": channel_id, "limit": self.page_size}
        if oldest is not None:
            params["oldest"] = f"{oldest:.6f}"
        if latest is not None:
            params["latest"] = f"{latest:.6f}"

        messages = await self._paginate(
            "conversations.history",
            "conversations_history",
            "messages",
            scope=f"channel:{channel_id}",
            **params
        )
        logger.info(f"Fetched {len(messages)} messages from {channel_id}")
        return _normalize_all(messages, normalize_message, "message", channel_id)
