from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.routing import IntegerConverter

from auth import current_user_id, login_required
from errors import Conflict, InvalidInput, NotFound
from models import MAX_ID
from schemas import CommentCreate, SubscriptionCreate, VideoCreate, parse
from storage import get_storage

api = Blueprint("api", __name__, url_prefix="/api")

FALSE_VALUES = ("false", "0", "no")


class IdConverter(IntegerConverter):
    """Path segment for row ids; larger numbers do not match any route."""

    def __init__(self, map, *args, **kwargs):
        super().__init__(map, max=MAX_ID)


# =====================================================
# HELPERS
# =====================================================
def int_arg(name, default=None):
    value = request.args.get(name)
    if value in (None, ""):
        return default
    try:
        number = int(value)
    except ValueError:
        raise InvalidInput(f"Invalid value for {name}")
    if abs(number) > MAX_ID:
        raise InvalidInput(f"Invalid value for {name}")
    return number


def page_args():
    limit = int_arg("limit", current_app.config["DEFAULT_PAGE_SIZE"])
    offset = int_arg("offset", 0)
    limit = max(1, min(limit, current_app.config["MAX_PAGE_SIZE"]))
    return limit, max(0, offset)


def json_body():
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def counts_view():
    """False when the client re-fetches a video right after reacting to it."""
    if request.headers.get("X-From-Action", "").lower() == "true":
        return False
    return request.args.get("countView", "true").lower() not in FALSE_VALUES


def author_of(item, detailed=False, cache=None):
    if cache is not None and item.user_id in cache:
        user = cache[item.user_id]
    else:
        user = get_storage().get_user(item.user_id)
        if cache is not None:
            cache[item.user_id] = user
    return user.summary(detailed=detailed) if user else None


def with_author(item, detailed=False, cache=None):
    data = item.to_dict()
    data["user"] = author_of(item, detailed=detailed, cache=cache)
    return data


def serialize_videos(videos):
    cache = {}
    return [with_author(video, cache=cache) for video in videos]


def thread_comments(comments):
    """Nest replies under their parent comment.

    Only one level is kept: replies to replies and replies whose parent is
    not among ``comments`` are left out. Input order is preserved.
    """
    parents = [c for c in comments if not c.get("parentId")]
    replies = [c for c in comments if c.get("parentId")]
    return [
        {**parent, "replies": [r for r in replies if r["parentId"] == parent["id"]]}
        for parent in parents
    ]


def require_video(video_id):
    video = get_storage().get_video(video_id)
    if video is None:
        raise NotFound("Video not found")
    return video


def require_user(user_id):
    user = get_storage().get_user(user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def channel_payload(user):
    videos = get_storage().get_user_videos(user.id)
    author = user.summary()
    return {
        "user": user.summary(detailed=True),
        "videos": [{**video.to_dict(), "user": author} for video in videos],
    }


# =====================================================
# VIDEOS
# =====================================================
@api.route("/videos")
def list_videos():
    limit, offset = page_args()
    videos = get_storage().get_videos(limit, offset, int_arg("categoryId"))
    return jsonify(serialize_videos(videos))


@api.route("/videos/<id:video_id>")
def video_detail(video_id):
    storage = get_storage()
    viewer_id = current_user_id()

    video = storage.get_video(video_id, viewer_id)
    if video is None:
        raise NotFound("Video not found")

    if counts_view():
        storage.increment_views(video_id)
        if viewer_id:
            storage.record_view(viewer_id, video_id)

    return jsonify(with_author(video, detailed=True))


@api.route("/videos", methods=["POST"])
@login_required
def create_video():
    body = json_body()
    data = parse(VideoCreate, {**body, "userId": g.user_id}, "Invalid video data")

    storage = get_storage()
    if data.category_id is not None and storage.get_category(data.category_id) is None:
        raise InvalidInput("Invalid video data")

    video = storage.create_video(data)
    return jsonify(with_author(video)), 201


@api.route("/search")
def search():
    query = request.args.get("q", "").strip()
    if not query:
        return jsonify([])
    videos = get_storage().search_videos(query, int_arg("categoryId"))
    return jsonify(serialize_videos(videos))


# =====================================================
# CHANNELS
# =====================================================
@api.route("/channels/<id:user_id>/videos")
def channel_videos(user_id):
    return jsonify(channel_payload(require_user(user_id)))


@api.route("/channels/username/<username>/videos")
def channel_videos_by_username(username):
    user = get_storage().get_user_by_username(username)
    if user is None:
        raise NotFound("User not found")
    return jsonify(channel_payload(user))


# =====================================================
# COMMENTS
# =====================================================
@api.route("/videos/<id:video_id>/comments")
def video_comments(video_id):
    require_video(video_id)
    cache = {}
    comments = [
        with_author(comment, cache=cache)
        for comment in get_storage().get_video_comments(video_id)
    ]
    return jsonify(thread_comments(comments))


@api.route("/videos/<id:video_id>/comments", methods=["POST"])
@login_required
def create_comment(video_id):
    require_video(video_id)
    body = json_body()
    # author always comes from the session, never from the body
    data = parse(
        CommentCreate,
        {**body, "videoId": video_id, "userId": g.user_id},
        "Invalid comment data",
    )

    storage = get_storage()
    if data.parent_id is not None:
        parent = storage.get_comment(data.parent_id)
        if parent is None or parent.video_id != video_id:
            raise InvalidInput("Invalid comment data")

    comment = storage.create_comment(data)
    return jsonify(with_author(comment)), 201


# =====================================================
# CATEGORIES
# =====================================================
@api.route("/categories")
def categories():
    return jsonify([c.to_dict() for c in get_storage().get_categories()])


# =====================================================
# REACTIONS
# =====================================================
@api.route("/videos/<id:video_id>/like", methods=["POST"])
@login_required
def like_video(video_id):
    video = get_storage().like_video(video_id, g.user_id)
    return jsonify(with_author(video, detailed=True))


@api.route("/videos/<id:video_id>/dislike", methods=["POST"])
@login_required
def dislike_video(video_id):
    video = get_storage().dislike_video(video_id, g.user_id)
    return jsonify(with_author(video, detailed=True))


# =====================================================
# SUBSCRIPTIONS
# =====================================================
@api.route("/channels/<id:publisher_id>/subscribe", methods=["POST"])
@login_required
def subscribe(publisher_id):
    subscriber_id = g.user_id
    if publisher_id == subscriber_id:
        raise Conflict("Cannot subscribe to your own channel")

    storage = get_storage()
    require_user(publisher_id)
    if storage.is_subscribed(subscriber_id, publisher_id):
        raise Conflict("Already subscribed to this channel")

    subscription = storage.create_subscription(SubscriptionCreate(
        subscriber_id=subscriber_id,
        publisher_id=publisher_id,
    ))
    return jsonify(subscription.to_dict()), 201


@api.route("/channels/<id:publisher_id>/unsubscribe", methods=["POST"])
@login_required
def unsubscribe(publisher_id):
    storage = get_storage()
    publisher = require_user(publisher_id)
    if not storage.delete_subscription(g.user_id, publisher_id):
        raise Conflict("Not subscribed to this channel")
    return jsonify({"success": True, "subscribers": publisher.subscribers})


@api.route("/channels/<id:publisher_id>/subscribed")
@login_required
def is_subscribed(publisher_id):
    return jsonify({"isSubscribed": get_storage().is_subscribed(g.user_id, publisher_id)})


@api.route("/users/<id:user_id>/subscriptions")
def user_subscriptions(user_id):
    return jsonify([u.to_dict() for u in get_storage().get_user_subscriptions(user_id)])


@api.route("/subscriptions")
@login_required
def my_subscriptions():
    return jsonify([u.to_dict() for u in get_storage().get_user_subscriptions(g.user_id)])


@api.route("/subscriptions/videos")
@login_required
def subscription_feed():
    limit, offset = page_args()
    videos = get_storage().get_subscription_videos(g.user_id, limit, offset)
    return jsonify(serialize_videos(videos))


# =====================================================
# SAVED VIDEOS / LIBRARY
# =====================================================
@api.route("/videos/<id:video_id>/save", methods=["POST"])
@login_required
def save_video(video_id):
    storage = get_storage()
    success = storage.save_video(video_id, g.user_id)
    video = storage.get_video(video_id, g.user_id)
    return jsonify({"success": success, "video": with_author(video)})


@api.route("/videos/<id:video_id>/unsave", methods=["POST"])
@login_required
def unsave_video(video_id):
    storage = get_storage()
    success = storage.unsave_video(video_id, g.user_id)
    video = storage.get_video(video_id, g.user_id)
    return jsonify({"success": success, "video": with_author(video)})


@api.route("/videos/saved")
@login_required
def saved_videos():
    return jsonify(serialize_videos(get_storage().get_saved_videos(g.user_id)))


@api.route("/videos/<id:video_id>/saved")
@login_required
def is_saved(video_id):
    return jsonify({"isSaved": get_storage().is_saved(video_id, g.user_id)})


@api.route("/users/me/watch-later")
@login_required
def watch_later():
    return jsonify(serialize_videos(get_storage().get_saved_videos(g.user_id)))


@api.route("/users/me/liked-videos")
@login_required
def liked_videos():
    return jsonify(serialize_videos(get_storage().get_liked_videos(g.user_id)))


@api.route("/users/me/history")
@login_required
def watch_history():
    return jsonify(serialize_videos(get_storage().get_watch_history(g.user_id)))


@api.route("/users/me/history", methods=["DELETE"])
@login_required
def clear_history():
    removed = get_storage().clear_watch_history(g.user_id)
    return jsonify({"success": True, "removed": removed})
