"""Engagement rollups computed from stored Slack messages.

``recompute_channel`` rebuilds the per-day EngagementMetric and UserActivity rows
of one channel from Message rows; every read method works off those rollups.
"""
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, or_

from config import Config
from database.db_manager import DatabaseManager
from database.models import Channel, EngagementMetric, Message, User, UserActivity
from utils.logger import get_logger
from .dates import date_range, epoch_bounds, utc_date, window_start
from .trend import AbsoluteThreshold, RelativeThreshold, Trend, classify_trend, compare_windows

logger = get_logger(__name__)

MESSAGE_WEIGHT = 1.0
REACTION_WEIGHT = 2.0
THREAD_WEIGHT = 1.5
USER_WEIGHT = 0.5


def engagement_score(message_count: int, reaction_count: int, thread_count: int, user_count: int) -> float:
    """Weighted activity per participating user; the divisor is floored at 1."""
    weighted = (
        message_count * MESSAGE_WEIGHT
        + reaction_count * REACTION_WEIGHT
        + thread_count * THREAD_WEIGHT
        + user_count * USER_WEIGHT
    )
    return weighted / max(user_count, 1)


def utc_today() -> date:
    return datetime.utcnow().date()


def _human_user():
    """Filter for users that count towards activity."""
    return (
        or_(User.is_bot.is_(False), User.is_bot.is_(None)),
        or_(User.deleted.is_(False), User.deleted.is_(None)),
    )


def _day_stats(messages: List[Any]) -> Dict[str, Any]:
    lengths = [len(m.text or "") for m in messages]
    return {
        "message_count": len(messages),
        "reaction_count": sum(m.reaction_count or 0 for m in messages),
        "thread_count": sum(1 for m in messages if m.thread_ts is not None),
        "avg_message_length": sum(lengths) / len(lengths),
    }


class AggregationEngine:
    """Computes and reads engagement rollups."""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        window_days: int = Config.METRICS_WINDOW_DAYS,
        today_fn: Optional[Callable[[], date]] = None,
    ):
        self.db = db_manager or DatabaseManager()
        self.window_days = window_days
        self.today_fn = today_fn or utc_today

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def recompute_channel(self, channel_id: str) -> Dict[str, int]:
        """Rebuild the channel's rollups for the last ``window_days`` days.

        The window's rows are deleted and rewritten in one transaction. Days
        without messages get no row.
        """
        today = self.today_fn()
        start = today - timedelta(days=self.window_days - 1)
        lower, upper = epoch_bounds(start, today)

        with self.db.get_session() as session:
            excluded = {
                user_id for (user_id,) in session.query(User.user_id).filter(
                    or_(User.is_bot.is_(True), User.deleted.is_(True))
                )
            }

            messages = session.query(
                Message.user_id,
                Message.text,
                Message.timestamp,
                Message.reaction_count,
                Message.thread_ts,
            ).filter(
                Message.channel_id == channel_id,
                Message.timestamp >= lower,
                Message.timestamp < upper,
            ).all()

            by_day: Dict[date, List[Any]] = defaultdict(list)
            for message in messages:
                if message.user_id in excluded:
                    continue
                by_day[utc_date(message.timestamp)].append(message)

            session.query(EngagementMetric).filter(
                EngagementMetric.channel_id == channel_id,
                EngagementMetric.date >= start,
                EngagementMetric.date <= today,
            ).delete(synchronize_session=False)
            session.query(UserActivity).filter(
                UserActivity.channel_id == channel_id,
                UserActivity.date >= start,
                UserActivity.date <= today,
            ).delete(synchronize_session=False)

            activity_rows = 0
            for day in sorted(by_day):
                day_messages = by_day[day]
                stats = _day_stats(day_messages)
                user_count = len({m.user_id for m in day_messages if m.user_id is not None})

                session.add(EngagementMetric(
                    channel_id=channel_id,
                    date=day,
                    user_count=user_count,
                    engagement_score=engagement_score(
                        stats["message_count"],
                        stats["reaction_count"],
                        stats["thread_count"],
                        user_count,
                    ),
                    **stats
                ))

                by_user: Dict[str, List[Any]] = defaultdict(list)
                for message in day_messages:
                    if message.user_id is not None:
                        by_user[message.user_id].append(message)

                for user_id in sorted(by_user):
                    session.add(UserActivity(
                        user_id=user_id,
                        channel_id=channel_id,
                        date=day,
                        **_day_stats(by_user[user_id])
                    ))
                    activity_rows += 1

            session.commit()

        logger.info(
            f"Recomputed {channel_id}: {len(by_day)} active days, "
            f"{activity_rows} user-day rows from {len(messages)} messages"
        )
        return {"days": len(by_day), "user_activity_rows": activity_rows, "messages": len(messages)}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def engagement_metrics(
        self,
        channel_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """Stored daily channel metrics, newest first."""
        with self.db.get_session() as session:
            query = session.query(EngagementMetric)
            if channel_id:
                query = query.filter(EngagementMetric.channel_id == channel_id)
            if start_date:
                query = query.filter(EngagementMetric.date >= start_date)
            if end_date:
                query = query.filter(EngagementMetric.date <= end_date)

            rows = query.order_by(EngagementMetric.date.desc(), EngagementMetric.channel_id).all()
            return [
                {
                    "channel_id": row.channel_id,
                    "date": row.date.isoformat(),
                    "message_count": row.message_count,
                    "user_count": row.user_count,
                    "reaction_count": row.reaction_count,
                    "thread_count": row.thread_count,
                    "avg_message_length": row.avg_message_length,
                    "engagement_score": row.engagement_score,
                }
                for row in rows
            ]

    def workspace_overview(self, days: int) -> Dict[str, Any]:
        today = self.today_fn()
        start = window_start(today, days)
        in_window = (EngagementMetric.date >= start, EngagementMetric.date <= today)
        activity_in_window = (UserActivity.date >= start, UserActivity.date <= today)

        with self.db.get_session() as session:
            totals = session.query(
                func.count(func.distinct(EngagementMetric.channel_id)),
                func.sum(EngagementMetric.message_count),
                func.sum(EngagementMetric.reaction_count),
                func.avg(EngagementMetric.engagement_score),
            ).filter(*in_window).one()

            total_users = session.query(
                func.count(func.distinct(UserActivity.user_id))
            ).filter(*activity_in_window).scalar()

            message_sum = func.sum(EngagementMetric.message_count)
            most_active = session.query(
                EngagementMetric.channel_id,
                Channel.name,
                message_sum,
            ).join(
                Channel, Channel.channel_id == EngagementMetric.channel_id
            ).filter(*in_window).group_by(
                EngagementMetric.channel_id, Channel.name
            ).order_by(message_sum.desc(), EngagementMetric.channel_id).first()

            per_day = session.query(
                EngagementMetric.date,
                func.sum(EngagementMetric.message_count),
                func.sum(EngagementMetric.reaction_count),
                func.sum(EngagementMetric.thread_count),
            ).filter(*in_window).group_by(EngagementMetric.date).order_by(EngagementMetric.date).all()

            users_per_day = dict(session.query(
                UserActivity.date,
                func.count(func.distinct(UserActivity.user_id)),
            ).filter(*activity_in_window).group_by(UserActivity.date).all())

            users_per_channel = dict(session.query(
                UserActivity.channel_id,
                func.count(func.distinct(UserActivity.user_id)),
            ).filter(*activity_in_window).group_by(UserActivity.channel_id).all())

            avg_score = func.avg(EngagementMetric.engagement_score)
            breakdown = session.query(
                EngagementMetric.channel_id,
                Channel.name,
                func.sum(EngagementMetric.message_count),
                avg_score,
            ).join(
                Channel, Channel.channel_id == EngagementMetric.channel_id
            ).filter(*in_window).group_by(
                EngagementMetric.channel_id, Channel.name
            ).order_by(avg_score.desc(), EngagementMetric.channel_id).all()

        daily_activity = []
        for day, messages, reactions, threads in per_day:
            users = users_per_day.get(day, 0)
            daily_activity.append({
                "date": day.isoformat(),
                "message_count": messages or 0,
                "reaction_count": reactions or 0,
                "thread_count": threads or 0,
                "user_count": users,
                "engagement_score": engagement_score(messages or 0, reactions or 0, threads or 0, users),
            })

        return {
            "total_channels": totals[0] or 0,
            "total_messages": totals[1] or 0,
            "total_users": total_users or 0,
            "total_reactions": totals[2] or 0,
            "avg_engagement_score": totals[3] or 0,
            "most_active_channel": (
                {"id": most_active[0], "name": most_active[1], "message_count": most_active[2]}
                if most_active else {"id": "", "name": "No data", "message_count": 0}
            ),
            "daily_activity": daily_activity,
            "channel_breakdown": [
                {
                    "channel_id": channel_id,
                    "channel_name": name,
                    "message_count": messages or 0,
                    "user_count": users_per_channel.get(channel_id, 0),
                    "engagement_score": score or 0,
                }
                for channel_id, name, messages, score in breakdown
            ],
        }

    def user_activation(self, days: int) -> Dict[str, Any]:
        today = self.today_fn()
        start = window_start(today, days)

        with self.db.get_session() as session:
            total_users = session.query(func.count(User.user_id)).filter(*_human_user()).scalar() or 0

            active_users = session.query(
                func.count(func.distinct(UserActivity.user_id))
            ).filter(UserActivity.date >= start, UserActivity.date <= today).scalar() or 0

            active_per_day = dict(session.query(
                UserActivity.date,
                func.count(func.distinct(UserActivity.user_id)),
            ).filter(
                UserActivity.date >= start, UserActivity.date <= today
            ).group_by(UserActivity.date).all())

            # First-seen is approximated by the user record's last update.
            new_per_day: Dict[date, int] = defaultdict(int)
            for (updated_at,) in session.query(User.updated_at).filter(*_human_user()):
                if updated_at is not None:
                    new_per_day[updated_at.date()] += 1

        def rate(active: int) -> float:
            return active / total_users * 100 if total_users > 0 else 0

        daily_activation = [
            {
                "date": day.isoformat(),
                "total_users": total_users,
                "active_users": active_per_day.get(day, 0),
                "activation_rate": rate(active_per_day.get(day, 0)),
                "new_users": new_per_day.get(day, 0),
            }
            for day in date_range(start, today)
        ]

        trend = classify_trend(
            [day["activation_rate"] for day in daily_activation],
            AbsoluteThreshold(Config.ACTIVATION_TREND_POINTS),
        )

        return {
            "total_workspace_users": total_users,
            "active_users": active_users,
            "activation_rate": rate(active_users),
            "daily_activation": daily_activation,
            "activation_trend": trend.value,
        }

    def channel_activity(self, channel_id: str, days: int) -> Dict[str, Any]:
        today = self.today_fn()
        start = window_start(today, days)

        with self.db.get_session() as session:
            rows = session.query(
                EngagementMetric.date,
                EngagementMetric.message_count,
                EngagementMetric.reaction_count,
                EngagementMetric.engagement_score,
            ).filter(
                EngagementMetric.channel_id == channel_id,
                EngagementMetric.date >= start,
                EngagementMetric.date <= today,
            ).all()

            if not rows:
                return {
                    "channel_id": channel_id,
                    "channel_name": "Unknown",
                    "total_messages": 0,
                    "total_users": 0,
                    "total_reactions": 0,
                    "avg_engagement_score": 0,
                    "most_active_day": "",
                    "trend": Trend.STABLE.value,
                }

            channel_name = session.query(Channel.name).filter(
                Channel.channel_id == channel_id
            ).scalar()

            total_users = session.query(
                func.count(func.distinct(UserActivity.user_id))
            ).filter(
                UserActivity.channel_id == channel_id,
                UserActivity.date >= start,
                UserActivity.date <= today,
            ).scalar() or 0

        # Ties go to the latest day.
        busiest = max(rows, key=lambda row: (row.message_count, row.date))

        return {
            "channel_id": channel_id,
            "channel_name": channel_name or "Unknown",
            "total_messages": sum(row.message_count for row in rows),
            "total_users": total_users,
            "total_reactions": sum(row.reaction_count for row in rows),
            "avg_engagement_score": sum(row.engagement_score for row in rows) / len(rows),
            "most_active_day": busiest.date.isoformat(),
            "trend": self.channel_trend(channel_id).value,
        }

    def channel_trend(self, channel_id: str, days: int = Config.CHANNEL_TREND_DAYS) -> Trend:
        """Last ``days`` days against the ``days`` before them."""
        today = self.today_fn()
        recent_start = today - timedelta(days=days)
        previous_start = today - timedelta(days=days * 2)

        with self.db.get_session() as session:
            rows = session.query(
                EngagementMetric.date, EngagementMetric.engagement_score
            ).filter(
                EngagementMetric.channel_id == channel_id,
                EngagementMetric.date >= previous_start,
                EngagementMetric.date <= today,
            ).all()

        previous = [score for day, score in rows if day < recent_start]
        recent = [score for day, score in rows if day >= recent_start]
        return compare_windows(previous, recent, RelativeThreshold(Config.ENGAGEMENT_TREND_RATIO))

    def user_rankings(
        self,
        channel_id: Optional[str] = None,
        days: int = 30,
        limit: int = Config.USER_RANKINGS_LIMIT,
    ) -> List[Dict[str, Any]]:
        """Users by message_count + 2 * reaction_count; ties ordered by user id."""
        today = self.today_fn()
        start = window_start(today, days)

        with self.db.get_session() as session:
            query = session.query(
                UserActivity.user_id,
                User.username,
                func.sum(UserActivity.message_count),
                func.sum(UserActivity.reaction_count),
            ).join(
                User, User.user_id == UserActivity.user_id
            ).filter(
                UserActivity.date >= start,
                UserActivity.date <= today,
                *_human_user(),
            )
            if channel_id:
                query = query.filter(UserActivity.channel_id == channel_id)

            rows = query.group_by(UserActivity.user_id, User.username).all()

        ranked = sorted(
            (
                {
                    "user_id": user_id,
                    "user_name": username,
                    "message_count": messages or 0,
                    "reaction_count": reactions or 0,
                    "engagement_score": (messages or 0) + (reactions or 0) * REACTION_WEIGHT,
                }
                for user_id, username, messages, reactions in rows
            ),
            key=lambda r: (-r["engagement_score"], r["user_id"]),
        )[:limit]

        for rank, row in enumerate(ranked, start=1):
            row["rank"] = rank
        return ranked

    def top_posts(self, days: int, limit: int = Config.TOP_POSTS_LIMIT) -> List[Dict[str, Any]]:
        """Messages with reactions or replies, by 2 * reactions + 1.5 * replies."""
        today = self.today_fn()
        lower, _ = epoch_bounds(window_start(today, days), today)

        with self.db.get_session() as session:
            rows = session.query(
                Message.ts,
                Message.channel_id,
                Channel.name,
                Message.user_id,
                User.username,
                Message.text,
                Message.timestamp,
                Message.reaction_count,
                Message.reply_count,
            ).join(
                Channel, Channel.channel_id == Message.channel_id
            ).outerjoin(
                User, User.user_id == Message.user_id
            ).filter(
                Message.timestamp >= lower,
                Message.text != "",
                or_(Message.reaction_count > 0, Message.reply_count > 0),
                *_human_user(),
            ).all()

        posts = [
            {
                "ts": row.ts,
                "channel_id": row.channel_id,
                "channel_name": row.name,
                "user_id": row.user_id,
                "user_name": row.username,
                "text": row.text,
                "reaction_count": row.reaction_count or 0,
                "reply_count": row.reply_count or 0,
                "engagement_score": (row.reaction_count or 0) * REACTION_WEIGHT
                + (row.reply_count or 0) * THREAD_WEIGHT,
                "date": utc_date(row.timestamp).isoformat(),
            }
            for row in rows
        ]
        posts.sort(key=lambda p: (-p["engagement_score"], -p["reaction_count"], p["ts"]))
        return posts[:limit]
