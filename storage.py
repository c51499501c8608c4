import logging
import secrets
from abc import ABC, abstractmethod
from datetime import datetime

from flask import current_app
from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from errors import Conflict, NotFound
from models import (
    db, User, Category, Video, Comment, Subscription,
    VideoReaction, SavedVideo, WatchHistory, AuthSession, LIKE, DISLIKE,
)

logger = logging.getLogger(__name__)


def _increment(column):
    return column + 1


def _decrement(column):
    # counters never go below zero
    return case((column > 0, column - 1), else_=0)


# =====================================================
# STORAGE INTERFACE
# =====================================================
class Storage(ABC):
    """Entity store, interaction engine and query layer behind the API.

    Lookups return ``None`` for missing rows. Toggle operations raise
    ``NotFound`` when the video does not exist and ``Conflict`` when a
    concurrent request changed the same (video, user) pair first.
    """

    # ---- users ----
    @abstractmethod
    def get_user(self, user_id): ...

    @abstractmethod
    def get_user_by_username(self, username): ...

    @abstractmethod
    def create_user(self, data): ...

    # ---- videos ----
    @abstractmethod
    def get_video(self, video_id, viewer_id=None): ...

    @abstractmethod
    def get_videos(self, limit=20, offset=0, category_id=None): ...

    @abstractmethod
    def get_user_videos(self, user_id): ...

    @abstractmethod
    def create_video(self, data): ...

    @abstractmethod
    def increment_views(self, video_id): ...

    @abstractmethod
    def search_videos(self, query, category_id=None): ...

    # ---- reactions ----
    @abstractmethod
    def like_video(self, video_id, user_id): ...

    @abstractmethod
    def dislike_video(self, video_id, user_id): ...

    @abstractmethod
    def get_liked_videos(self, user_id): ...

    # ---- saved videos ----
    @abstractmethod
    def save_video(self, video_id, user_id): ...

    @abstractmethod
    def unsave_video(self, video_id, user_id): ...

    @abstractmethod
    def is_saved(self, video_id, user_id): ...

    @abstractmethod
    def get_saved_videos(self, user_id): ...

    # ---- watch history ----
    @abstractmethod
    def record_view(self, user_id, video_id): ...

    @abstractmethod
    def get_watch_history(self, user_id): ...

    @abstractmethod
    def clear_watch_history(self, user_id): ...

    # ---- comments ----
    @abstractmethod
    def get_comment(self, comment_id): ...

    @abstractmethod
    def get_video_comments(self, video_id): ...

    @abstractmethod
    def create_comment(self, data): ...

    # ---- subscriptions ----
    @abstractmethod
    def create_subscription(self, data): ...

    @abstractmethod
    def delete_subscription(self, subscriber_id, publisher_id): ...

    @abstractmethod
    def get_user_subscriptions(self, user_id): ...

    @abstractmethod
    def is_subscribed(self, subscriber_id, publisher_id): ...

    @abstractmethod
    def get_subscription_videos(self, user_id, limit=20, offset=0): ...

    # ---- categories ----
    @abstractmethod
    def get_categories(self): ...

    @abstractmethod
    def get_category(self, category_id): ...

    @abstractmethod
    def create_category(self, data): ...

    @abstractmethod
    def seed_categories(self, names): ...

    # ---- auth sessions ----
    @abstractmethod
    def create_session(self, user_id, ttl): ...

    @abstractmethod
    def get_session(self, token): ...

    @abstractmethod
    def delete_session(self, token): ...


# =====================================================
# SQLALCHEMY STORAGE
# =====================================================
class SQLStorage(Storage):
    """Storage backed by the Flask-SQLAlchemy session.

    Every mutation commits its relation rows and counter updates in a single
    transaction. Counters are updated with SQL expressions so concurrent
    writers never lose an increment.
    """

    def __init__(self, all_category_id=1):
        self.all_category_id = all_category_id

    # ---------------- helpers ----------------
    def _category_filter(self, query, category_id):
        if not category_id or category_id == self.all_category_id:
            return query
        return query.filter(Video.category_id == category_id)

    def _require_video(self, video_id, lock=False):
        video = db.session.get(Video, video_id, with_for_update=True if lock else None)
        if video is None:
            raise NotFound("Video not found")
        return video

    def _viewer_state(self, video_id, user_id):
        reaction = VideoReaction.query.filter_by(video_id=video_id, user_id=user_id).first()
        vote = reaction.vote if reaction else 0
        return {
            "userLiked": vote == LIKE,
            "userDisliked": vote == DISLIKE,
            "userSaved": self.is_saved(video_id, user_id),
        }

    def _bump(self, model, row_id, **changes):
        db.session.execute(
            update(model)
            .where(model.id == row_id)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )

    # ---------------- users ----------------
    def get_user(self, user_id):
        return db.session.get(User, user_id)

    def get_user_by_username(self, username):
        return User.query.filter_by(username=username).first()

    def create_user(self, data):
        user = User(
            username=data.username,
            password=data.password,
            display_name=data.display_name or data.username,
            avatar=data.avatar,
            description=data.description or "",
            subscribers=0,
        )
        db.session.add(user)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict("Username already exists")
        logger.info("Created user %s (id=%s)", user.username, user.id)
        return user

    # ---------------- videos ----------------
    def get_video(self, video_id, viewer_id=None):
        video = db.session.get(Video, video_id)
        if video is None:
            return None
        video.viewer_state = self._viewer_state(video_id, viewer_id) if viewer_id else None
        return video

    def get_videos(self, limit=20, offset=0, category_id=None):
        query = self._category_filter(Video.query, category_id)
        return query.order_by(Video.id.desc()).offset(offset).limit(limit).all()

    def get_user_videos(self, user_id):
        return Video.query.filter_by(user_id=user_id).order_by(Video.id.desc()).all()

    def create_video(self, data):
        video = Video(
            user_id=data.user_id,
            category_id=data.category_id,
            title=data.title,
            description=data.description,
            thumbnail_url=data.thumbnail_url,
            video_url=data.video_url,
            duration=data.duration,
            views=0,
            likes=0,
            dislikes=0,
        )
        db.session.add(video)
        db.session.commit()
        logger.info("User %s uploaded video %s", video.user_id, video.id)
        return video

    def increment_views(self, video_id):
        self._bump(Video, video_id, views=_increment(Video.views))
        db.session.commit()

    def search_videos(self, query, category_id=None):
        matches = Video.query.filter(or_(
            Video.title.icontains(query, autoescape=True),
            Video.description.icontains(query, autoescape=True),
        ))
        return self._category_filter(matches, category_id).all()

    # ---------------- reactions ----------------
    def _react(self, video_id, user_id, vote):
        video = self._require_video(video_id, lock=True)
        own, other = (Video.likes, Video.dislikes) if vote == LIKE else (Video.dislikes, Video.likes)
        reaction = VideoReaction.query.filter_by(video_id=video_id, user_id=user_id).first()

        try:
            if reaction is not None and reaction.vote == vote:
                # toggle off; zero rows means another request removed it first
                removed = VideoReaction.query.filter_by(id=reaction.id, vote=vote).delete(
                    synchronize_session=False
                )
                if not removed:
                    raise StaleDataError("reaction %s already removed" % reaction.id)
                self._bump(Video, video_id, **{own.key: _decrement(own)})
            elif reaction is not None:
                # switching sides retracts the opposite reaction
                reaction.vote = vote
                self._bump(Video, video_id, **{
                    own.key: _increment(own),
                    other.key: _decrement(other),
                })
            else:
                db.session.add(VideoReaction(video_id=video_id, user_id=user_id, vote=vote))
                self._bump(Video, video_id, **{own.key: _increment(own)})
            db.session.commit()
        except (IntegrityError, StaleDataError):
            db.session.rollback()
            logger.warning("Concurrent reaction on video %s by user %s", video_id, user_id)
            raise Conflict("Reaction changed concurrently, try again")

        db.session.refresh(video)
        video.viewer_state = self._viewer_state(video_id, user_id)
        return video

    def like_video(self, video_id, user_id):
        return self._react(video_id, user_id, LIKE)

    def dislike_video(self, video_id, user_id):
        return self._react(video_id, user_id, DISLIKE)

    def get_liked_videos(self, user_id):
        return (
            Video.query.join(VideoReaction, VideoReaction.video_id == Video.id)
            .filter(VideoReaction.user_id == user_id, VideoReaction.vote == LIKE)
            .order_by(Video.id.desc())
            .all()
        )

    # ---------------- saved videos ----------------
    def save_video(self, video_id, user_id):
        self._require_video(video_id)
        if self.is_saved(video_id, user_id):
            return True
        db.session.add(SavedVideo(video_id=video_id, user_id=user_id))
        try:
            db.session.commit()
        except IntegrityError:
            # a concurrent request saved it first; the mark is set either way
            db.session.rollback()
        return True

    def unsave_video(self, video_id, user_id):
        self._require_video(video_id)
        SavedVideo.query.filter_by(video_id=video_id, user_id=user_id).delete(
            synchronize_session=False
        )
        db.session.commit()
        return True

    def is_saved(self, video_id, user_id):
        return bool(db.session.query(
            SavedVideo.query.filter_by(video_id=video_id, user_id=user_id).exists()
        ).scalar())

    def get_saved_videos(self, user_id):
        return (
            Video.query.join(SavedVideo, SavedVideo.video_id == Video.id)
            .filter(SavedVideo.user_id == user_id)
            .order_by(Video.id.desc())
            .all()
        )

    # ---------------- watch history ----------------
    def record_view(self, user_id, video_id):
        entry = WatchHistory.query.filter_by(user_id=user_id, video_id=video_id).first()
        if entry is None:
            db.session.add(WatchHistory(user_id=user_id, video_id=video_id))
        else:
            entry.watched_at = datetime.utcnow()
        try:
            db.session.commit()
        except IntegrityError:
            # entry created by a concurrent view
            db.session.rollback()

    def get_watch_history(self, user_id):
        return (
            Video.query.join(WatchHistory, WatchHistory.video_id == Video.id)
            .filter(WatchHistory.user_id == user_id)
            .order_by(WatchHistory.watched_at.desc(), WatchHistory.id.desc())
            .all()
        )

    def clear_watch_history(self, user_id):
        removed = WatchHistory.query.filter_by(user_id=user_id).delete(synchronize_session=False)
        db.session.commit()
        return removed

    # ---------------- comments ----------------
    def get_comment(self, comment_id):
        return db.session.get(Comment, comment_id)

    def get_video_comments(self, video_id):
        return Comment.query.filter_by(video_id=video_id).order_by(Comment.id.desc()).all()

    def create_comment(self, data):
        comment = Comment(
            video_id=data.video_id,
            user_id=data.user_id,
            content=data.content,
            parent_id=data.parent_id,
            likes=0,
            dislikes=0,
        )
        db.session.add(comment)
        db.session.commit()
        return comment

    # ---------------- subscriptions ----------------
    def create_subscription(self, data):
        subscription = Subscription(
            subscriber_id=data.subscriber_id,
            publisher_id=data.publisher_id,
        )
        db.session.add(subscription)
        try:
            db.session.flush()
            self._bump(User, data.publisher_id, subscribers=_increment(User.subscribers))
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict("Already subscribed to this channel")
        logger.info("User %s subscribed to %s", data.subscriber_id, data.publisher_id)
        return subscription

    def delete_subscription(self, subscriber_id, publisher_id):
        removed = Subscription.query.filter_by(
            subscriber_id=subscriber_id, publisher_id=publisher_id
        ).delete(synchronize_session=False)
        if removed:
            self._bump(User, publisher_id, subscribers=_decrement(User.subscribers))
        db.session.commit()
        if removed:
            logger.info("User %s unsubscribed from %s", subscriber_id, publisher_id)
        return bool(removed)

    def get_user_subscriptions(self, user_id):
        return (
            User.query.join(Subscription, Subscription.publisher_id == User.id)
            .filter(Subscription.subscriber_id == user_id)
            .order_by(Subscription.id.asc())
            .all()
        )

    def is_subscribed(self, subscriber_id, publisher_id):
        return bool(db.session.query(
            Subscription.query.filter_by(
                subscriber_id=subscriber_id, publisher_id=publisher_id
            ).exists()
        ).scalar())

    def get_subscription_videos(self, user_id, limit=20, offset=0):
        publishers = select(Subscription.publisher_id).where(
            Subscription.subscriber_id == user_id
        )
        return (
            Video.query.filter(Video.user_id.in_(publishers))
            .order_by(Video.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    # ---------------- categories ----------------
    def get_categories(self):
        return Category.query.order_by(Category.id.asc()).all()

    def get_category(self, category_id):
        return db.session.get(Category, category_id)

    def create_category(self, data):
        category = Category(name=data.name)
        db.session.add(category)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict("Category already exists")
        return category

    def seed_categories(self, names):
        existing = {c.name for c in Category.query.all()}
        missing = [name for name in names if name not in existing]
        for name in missing:
            db.session.add(Category(name=name))
        db.session.commit()
        if missing:
            logger.info("Seeded %d categories", len(missing))
        return missing

    # ---------------- auth sessions ----------------
    def create_session(self, user_id, ttl):
        session = AuthSession(
            token=secrets.token_hex(32),
            user_id=user_id,
            expires=datetime.utcnow() + ttl,
        )
        db.session.add(session)
        db.session.commit()
        return session

    def get_session(self, token):
        return db.session.get(AuthSession, token)

    def delete_session(self, token):
        AuthSession.query.filter_by(token=token).delete(synchronize_session=False)
        db.session.commit()



def get_storage():
    """The storage configured for the current application."""
    return current_app.extensions["storage"]
