from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()   # defined ONLY here

LIKE = 1
DISLIKE = -1

# largest value an INTEGER id column holds
MAX_ID = 2**31 - 1


def _iso(value):
    return value.isoformat() if value else None


# =====================================================
# USER MODEL
# =====================================================
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)
    display_name = db.Column(db.String(120), nullable=False)
    avatar = db.Column(db.String(500))
    description = db.Column(db.Text, default="")
    subscribers = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # relationships
    videos = db.relationship("Video", backref="author", lazy=True)
    comments = db.relationship("Comment", backref="author", lazy=True)

    def summary(self, detailed=False):
        """Author data embedded in video and comment payloads."""
        data = {
            "id": self.id,
            "username": self.username,
            "displayName": self.display_name,
            "avatar": self.avatar,
            "subscribers": self.subscribers,
        }
        if detailed:
            data["description"] = self.description
            data["createdAt"] = _iso(self.created_at)
        return data

    def to_dict(self):
        return self.summary(detailed=True)

    def __repr__(self):
        return f"<User {self.username}>"


# =====================================================
# CATEGORY MODEL
# =====================================================
class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)

    videos = db.relationship("Video", backref="category", lazy=True)

    def to_dict(self):
        return {"id": self.id, "name": self.name}

    def __repr__(self):
        return f"<Category {self.name}>"


# =====================================================
# VIDEO MODEL
# =====================================================
class Video(db.Model):
    __tablename__ = "videos"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"))

    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text)
    thumbnail_url = db.Column(db.String(500))
    video_url = db.Column(db.String(500), nullable=False)
    duration = db.Column(db.Integer)

    views = db.Column(db.Integer, default=0, nullable=False)
    likes = db.Column(db.Integer, default=0, nullable=False)
    dislikes = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    comments = db.relationship("Comment", backref="video", lazy=True)

    def to_dict(self):
        data = {
            "id": self.id,
            "userId": self.user_id,
            "categoryId": self.category_id,
            "title": self.title,
            "description": self.description,
            "thumbnailUrl": self.thumbnail_url,
            "videoUrl": self.video_url,
            "views": self.views,
            "likes": self.likes,
            "dislikes": self.dislikes,
            "duration": self.duration,
            "createdAt": _iso(self.created_at),
        }
        # per-viewer flags, set by the storage for one request only
        viewer_state = getattr(self, "viewer_state", None)
        if viewer_state:
            data.update(viewer_state)
        return data

    def __repr__(self):
        return f"<Video {self.title}>"


# =====================================================
# COMMENT MODEL
# =====================================================
class Comment(db.Model):
    __tablename__ = "comments"

    id = db.Column(db.Integer, primary_key=True)
    video_id = db.Column(db.Integer, db.ForeignKey("videos.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    likes = db.Column(db.Integer, default=0, nullable=False)
    dislikes = db.Column(db.Integer, default=0, nullable=False)
    # single level of nesting; not a FK so orphans survive parent removal
    parent_id = db.Column(db.Integer, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "videoId": self.video_id,
            "userId": self.user_id,
            "content": self.content,
            "likes": self.likes,
            "dislikes": self.dislikes,
            "parentId": self.parent_id,
            "createdAt": _iso(self.created_at),
        }


# =====================================================
# SUBSCRIPTION MODEL
# =====================================================
class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    subscriber_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    publisher_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("subscriber_id", "publisher_id", name="unique_subscription"),
        db.CheckConstraint("subscriber_id != publisher_id", name="no_self_subscription"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "subscriberId": self.subscriber_id,
            "publisherId": self.publisher_id,
            "createdAt": _iso(self.created_at),
        }


# =====================================================
# VIDEO REACTION MODEL (like = 1, dislike = -1)
# =====================================================
class VideoReaction(db.Model):
    __tablename__ = "video_reactions"

    id = db.Column(db.Integer, primary_key=True)
    video_id = db.Column(
        db.Integer,
        db.ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    vote = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("video_id", "user_id", name="unique_reaction"),
        db.CheckConstraint("vote IN (1, -1)", name="valid_vote"),
    )


# =====================================================
# SAVED VIDEO MODEL (watch later)
# =====================================================
class SavedVideo(db.Model):
    __tablename__ = "saved_videos"

    id = db.Column(db.Integer, primary_key=True)
    video_id = db.Column(
        db.Integer,
        db.ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("video_id", "user_id", name="unique_saved_video"),
    )


# =====================================================
# WATCH HISTORY MODEL
# =====================================================
class WatchHistory(db.Model):
    __tablename__ = "watch_history"

    id = db.Column(db.Integer, primary_key=True)
    video_id = db.Column(
        db.Integer,
        db.ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    watched_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("video_id", "user_id", name="unique_watch_entry"),
    )


# =====================================================
# AUTH SESSION MODEL (bearer tokens)
# =====================================================
class AuthSession(db.Model):
    __tablename__ = "auth_sessions"

    token = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    expires = db.Column(db.DateTime, nullable=False)
