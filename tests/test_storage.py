from datetime import timedelta

import pytest
from sqlalchemy import delete

from errors import Conflict, NotFound
from models import db, SavedVideo, VideoReaction
from schemas import CategoryCreate, SubscriptionCreate

GAMING = 2
MUSIC = 3


def subscribe(storage, subscriber, publisher):
    return storage.create_subscription(SubscriptionCreate(
        subscriber_id=subscriber.id,
        publisher_id=publisher.id,
    ))


# ==============================
# ENTITY STORE
# ==============================
def test_create_user_initializes_counters(storage, make_user):
    alice = make_user("alice")
    bob = make_user("bob", display_name="Bob B.")

    assert alice.id < bob.id
    assert alice.subscribers == 0
    assert alice.created_at is not None
    assert alice.display_name == "alice"
    assert bob.display_name == "Bob B."


def test_duplicate_username_is_rejected(storage, make_user):
    make_user("alice")
    with pytest.raises(Conflict):
        make_user("alice")


def test_user_lookups_return_none_when_missing(storage, make_user):
    alice = make_user("alice")

    assert storage.get_user(alice.id) is alice
    assert storage.get_user_by_username("alice").id == alice.id
    assert storage.get_user(999) is None
    assert storage.get_user_by_username("nobody") is None


def test_create_video_zeroes_counters(storage, make_user, make_video):
    video = make_video(make_user("alice"), "First")

    assert (video.views, video.likes, video.dislikes) == (0, 0, 0)
    assert storage.get_video(video.id).title == "First"
    assert storage.get_video(404) is None


def test_categories_are_seeded_once(storage):
    names = [c.name for c in storage.get_categories()]
    assert names[0] == "All"
    assert len(names) == 10

    assert storage.seed_categories(["All", "Music", "Podcasts"]) == ["Podcasts"]
    assert len(storage.get_categories()) == 11


def test_create_category_rejects_duplicates(storage):
    category = storage.create_category(CategoryCreate(name="Science"))
    assert storage.get_category(category.id).name == "Science"
    with pytest.raises(Conflict):
        storage.create_category(CategoryCreate(name="Science"))


# ==============================
# LIKE / DISLIKE TOGGLES
# ==============================
def test_like_toggles_on_and_off(storage, make_user, make_video):
    viewer = make_user("viewer")
    video = make_video(make_user("author"))

    liked = storage.like_video(video.id, viewer.id)
    assert liked.likes == 1
    assert liked.to_dict()["userLiked"] is True
    assert liked.to_dict()["userDisliked"] is False

    unliked = storage.like_video(video.id, viewer.id)
    assert unliked.likes == 0
    assert unliked.to_dict()["userLiked"] is False


@pytest.mark.parametrize("calls", [1, 2, 3, 4, 5])
def test_like_parity(storage, make_user, make_video, calls):
    viewer = make_user("viewer")
    video = make_video(make_user("author"))

    for _ in range(calls):
        result = storage.like_video(video.id, viewer.id)

    odd = calls % 2 == 1
    assert result.likes == (1 if odd else 0)
    assert result.to_dict()["userLiked"] is odd
    assert result.to_dict()["userDisliked"] is False


def test_dislike_retracts_prior_like(storage, make_user, make_video):
    viewer = make_user("viewer")
    video = make_video(make_user("author"))

    storage.like_video(video.id, viewer.id)
    result = storage.dislike_video(video.id, viewer.id)

    assert (result.likes, result.dislikes) == (0, 1)
    assert result.to_dict()["userLiked"] is False
    assert result.to_dict()["userDisliked"] is True


def test_like_retracts_prior_dislike(storage, make_user, make_video):
    viewer = make_user("viewer")
    video = make_video(make_user("author"))

    storage.dislike_video(video.id, viewer.id)
    result = storage.like_video(video.id, viewer.id)

    assert (result.likes, result.dislikes) == (1, 0)
    assert result.to_dict()["userLiked"] is True
    assert result.to_dict()["userDisliked"] is False


def test_reactions_from_different_users_accumulate(storage, make_user, make_video):
    video = make_video(make_user("author"))
    ann, ben, cat = make_user("ann"), make_user("ben"), make_user("cat")

    storage.like_video(video.id, ann.id)
    storage.like_video(video.id, ben.id)
    result = storage.dislike_video(video.id, cat.id)

    assert (result.likes, result.dislikes) == (2, 1)
    # flags belong to the caller only
    assert result.to_dict()["userLiked"] is False
    assert result.to_dict()["userDisliked"] is True


def test_counters_never_go_negative(storage, make_user, make_video):
    viewer = make_user("viewer")
    video = make_video(make_user("author"))
    sequence = "LDDLLLDDDLDLLD"

    for step in sequence:
        toggle = storage.like_video if step == "L" else storage.dislike_video
        result = toggle(video.id, viewer.id)
        state = result.to_dict()
        assert result.likes >= 0 and result.dislikes >= 0
        assert not (state["userLiked"] and state["userDisliked"])
        assert result.likes == int(state["userLiked"])
        assert result.dislikes == int(state["userDisliked"])


def test_reacting_to_missing_video_raises(storage, make_user):
    viewer = make_user("viewer")
    with pytest.raises(NotFound):
        storage.like_video(123, viewer.id)
    with pytest.raises(NotFound):
        storage.dislike_video(123, viewer.id)


def test_get_video_decorates_viewer_flags(storage, make_user, make_video):
    viewer = make_user("viewer")
    video = make_video(make_user("author"))
    storage.like_video(video.id, viewer.id)
    storage.save_video(video.id, viewer.id)

    decorated = storage.get_video(video.id, viewer.id).to_dict()
    assert decorated["userLiked"] is True
    assert decorated["userDisliked"] is False
    assert decorated["userSaved"] is True

    anonymous = storage.get_video(video.id).to_dict()
    assert "userLiked" not in anonymous


def test_liked_videos_lists_current_likes(storage, make_user, make_video):
    viewer = make_user("viewer")
    author = make_user("author")
    first, second, third = (make_video(author, t) for t in ("One", "Two", "Three"))

    storage.like_video(first.id, viewer.id)
    storage.like_video(third.id, viewer.id)
    storage.dislike_video(second.id, viewer.id)

    assert [v.id for v in storage.get_liked_videos(viewer.id)] == [third.id, first.id]

    storage.dislike_video(third.id, viewer.id)
    assert [v.id for v in storage.get_liked_videos(viewer.id)] == [first.id]


# ==============================
# SAVED VIDEOS
# ==============================
def test_save_is_idempotent(storage, make_user, make_video):
    viewer = make_user("viewer")
    video = make_video(make_user("author"))

    assert storage.is_saved(video.id, viewer.id) is False
    assert storage.save_video(video.id, viewer.id) is True
    assert storage.save_video(video.id, viewer.id) is True
    assert storage.is_saved(video.id, viewer.id) is True
    assert len(storage.get_saved_videos(viewer.id)) == 1

    storage.unsave_video(video.id, viewer.id)
    storage.unsave_video(video.id, viewer.id)
    assert storage.is_saved(video.id, viewer.id) is False
    assert storage.get_saved_videos(viewer.id) == []


def test_saved_videos_newest_first(storage, make_user, make_video):
    viewer = make_user("viewer")
    other = make_user("other")
    author = make_user("author")
    older, newer = make_video(author, "Older"), make_video(author, "Newer")

    storage.save_video(older.id, viewer.id)
    storage.save_video(newer.id, viewer.id)
    storage.save_video(older.id, other.id)

    assert [v.id for v in storage.get_saved_videos(viewer.id)] == [newer.id, older.id]
    assert [v.id for v in storage.get_saved_videos(other.id)] == [older.id]


def test_save_missing_video_raises(storage, make_user):
    viewer = make_user("viewer")
    with pytest.raises(NotFound):
        storage.save_video(77, viewer.id)
    with pytest.raises(NotFound):
        storage.unsave_video(77, viewer.id)


# ==============================
# SUBSCRIPTIONS
# ==============================
def test_subscription_increments_publisher(storage, make_user):
    publisher, subscriber = make_user("publisher"), make_user("subscriber")

    subscription = subscribe(storage, subscriber, publisher)

    assert subscription.id is not None
    assert storage.get_user(publisher.id).subscribers == 1
    assert storage.is_subscribed(subscriber.id, publisher.id) is True
    assert storage.is_subscribed(publisher.id, subscriber.id) is False


def test_duplicate_subscription_does_not_double_count(storage, make_user):
    publisher, subscriber = make_user("publisher"), make_user("subscriber")
    subscribe(storage, subscriber, publisher)

    with pytest.raises(Conflict):
        subscribe(storage, subscriber, publisher)

    assert storage.get_user(publisher.id).subscribers == 1


def test_unsubscribe_decrements_publisher(storage, make_user):
    publisher, subscriber = make_user("publisher"), make_user("subscriber")
    subscribe(storage, subscriber, publisher)

    assert storage.delete_subscription(subscriber.id, publisher.id) is True
    assert storage.get_user(publisher.id).subscribers == 0
    assert storage.is_subscribed(subscriber.id, publisher.id) is False

    assert storage.delete_subscription(subscriber.id, publisher.id) is False
    assert storage.get_user(publisher.id).subscribers == 0


def test_user_subscriptions_and_feed(storage, make_user, make_video):
    viewer = make_user("viewer")
    followed, ignored = make_user("followed"), make_user("ignored")
    subscribe(storage, viewer, followed)

    old = make_video(followed, "Old")
    make_video(ignored, "Skipped")
    new = make_video(followed, "New")

    assert [u.id for u in storage.get_user_subscriptions(viewer.id)] == [followed.id]
    assert [v.id for v in storage.get_subscription_videos(viewer.id)] == [new.id, old.id]
    assert [v.id for v in storage.get_subscription_videos(viewer.id, limit=1, offset=1)] == [old.id]


# ==============================
# QUERIES
# ==============================
def test_get_videos_all_sentinel_paginates_newest_first(storage, make_user, make_video):
    author = make_user("author")
    videos = [make_video(author, t, category_id=GAMING) for t in ("A", "B", "C")]

    result = storage.get_videos(limit=1, offset=0, category_id=1)

    assert [v.id for v in result] == [videos[2].id]
    assert [v.id for v in storage.get_videos(limit=2, offset=1)] == [videos[1].id, videos[0].id]


def test_get_videos_filters_by_category(storage, make_user, make_video):
    author = make_user("author")
    game = make_video(author, "Speedrun", category_id=GAMING)
    song = make_video(author, "Ballad", category_id=MUSIC)

    assert [v.id for v in storage.get_videos(category_id=GAMING)] == [game.id]
    assert [v.id for v in storage.get_videos(category_id=MUSIC)] == [song.id]
    assert len(storage.get_videos()) == 2
    assert len(storage.get_videos(category_id=0)) == 2


def test_get_user_videos_newest_first(storage, make_user, make_video):
    alice, bob = make_user("alice"), make_user("bob")
    first = make_video(alice, "First")
    make_video(bob, "Other")
    second = make_video(alice, "Second")

    assert [v.id for v in storage.get_user_videos(alice.id)] == [second.id, first.id]


def test_search_matches_title_or_description(storage, make_user, make_video):
    author = make_user("author")
    by_title = make_video(author, "Python Tips", category_id=GAMING)
    by_description = make_video(author, "Weekly Vlog", description="learning PYTHON", category_id=MUSIC)
    make_video(author, "Cooking")

    found = {v.id for v in storage.search_videos("python")}
    assert found == {by_title.id, by_description.id}

    filtered = storage.search_videos("python", category_id=MUSIC)
    assert [v.id for v in filtered] == [by_description.id]
    assert len(storage.search_videos("python", category_id=1)) == 2


def test_search_treats_wildcards_literally(storage, make_user, make_video):
    author = make_user("author")
    make_video(author, "Cooking")
    discount = make_video(author, "Save 100% today")

    assert [v.id for v in storage.search_videos("100%")] == [discount.id]
    assert storage.search_videos("%") == [discount]


def test_increment_views(storage, make_user, make_video):
    video = make_video(make_user("author"))
    storage.increment_views(video.id)
    storage.increment_views(video.id)
    assert storage.get_video(video.id).views == 2


def test_video_comments_newest_first(storage, make_user, make_video, make_comment):
    author = make_user("author")
    video, other = make_video(author, "One"), make_video(author, "Two")
    first = make_comment(video, author, "first")
    make_comment(other, author, "elsewhere")
    reply = make_comment(video, author, "reply", parent_id=first.id)

    comments = storage.get_video_comments(video.id)
    assert [c.id for c in comments] == [reply.id, first.id]
    assert comments[0].parent_id == first.id
    assert storage.get_comment(first.id).content == "first"


# ==============================
# WATCH HISTORY
# ==============================
def test_watch_history_orders_by_last_view(storage, make_user, make_video):
    viewer = make_user("viewer")
    author = make_user("author")
    first, second = make_video(author, "One"), make_video(author, "Two")

    storage.record_view(viewer.id, first.id)
    storage.record_view(viewer.id, second.id)
    assert [v.id for v in storage.get_watch_history(viewer.id)] == [second.id, first.id]

    storage.record_view(viewer.id, first.id)
    assert [v.id for v in storage.get_watch_history(viewer.id)] == [first.id, second.id]

    assert storage.clear_watch_history(viewer.id) == 2
    assert storage.get_watch_history(viewer.id) == []


# ==============================
# AUTH SESSIONS
# ==============================
def test_sessions_round_trip(storage, make_user):
    user = make_user("alice")
    token = storage.create_session(user.id, timedelta(hours=1)).token

    assert len(token) == 64
    assert storage.get_session(token).user_id == user.id

    storage.delete_session(token)
    assert storage.get_session(token) is None


# ==============================
# CONCURRENT WRITERS
# ==============================
class _FixedLookup:
    """Stands in for a model's query; every lookup returns ``row``."""

    def __init__(self, row):
        self.row = row

    def filter_by(self, **kwargs):
        return self

    def first(self):
        return self.row


def test_racing_like_is_not_counted_twice(storage, make_user, make_video, monkeypatch):
    viewer = make_user("viewer")
    video = make_video(make_user("author"))
    storage.like_video(video.id, viewer.id)

    # the other request's reaction row is not visible to this one's lookup
    monkeypatch.setattr(VideoReaction, "query", _FixedLookup(None))
    with pytest.raises(Conflict):
        storage.like_video(video.id, viewer.id)
    monkeypatch.undo()

    assert storage.get_video(video.id).likes == 1
    assert VideoReaction.query.filter_by(video_id=video.id, user_id=viewer.id).count() == 1


def test_reaction_removed_meanwhile_rolls_back(storage, make_user, make_video, monkeypatch):
    viewer = make_user("viewer")
    video = make_video(make_user("author"))
    storage.like_video(video.id, viewer.id)

    row = VideoReaction.query.filter_by(video_id=video.id, user_id=viewer.id).first()
    db.session.execute(
        delete(VideoReaction)
        .where(VideoReaction.id == row.id)
        .execution_options(synchronize_session=False)
    )
    monkeypatch.setattr(VideoReaction, "query", _FixedLookup(row))
    with pytest.raises(Conflict):
        storage.dislike_video(video.id, viewer.id)
    monkeypatch.undo()

    result = storage.get_video(video.id, viewer.id)
    assert (result.likes, result.dislikes) == (1, 0)
    assert result.to_dict()["userLiked"] is True


def test_toggle_off_after_row_removed_rolls_back(storage, make_user, make_video, monkeypatch):
    viewer = make_user("viewer")
    video = make_video(make_user("author"))
    storage.like_video(video.id, viewer.id)

    row = VideoReaction.query.filter_by(video_id=video.id, user_id=viewer.id).first()
    db.session.execute(
        delete(VideoReaction)
        .where(VideoReaction.id == row.id)
        .execution_options(synchronize_session=False)
    )
    original = VideoReaction.query

    class _StaleRead:
        def filter_by(self, **kwargs):
            return _FixedLookup(row) if "video_id" in kwargs else original.filter_by(**kwargs)

    monkeypatch.setattr(VideoReaction, "query", _StaleRead())
    with pytest.raises(Conflict):
        storage.like_video(video.id, viewer.id)
    monkeypatch.undo()

    assert storage.get_video(video.id).likes == 1


def test_racing_save_keeps_a_single_mark(storage, make_user, make_video, monkeypatch):
    viewer = make_user("viewer")
    video = make_video(make_user("author"))
    storage.save_video(video.id, viewer.id)

    # both requests saw the video as not yet saved
    monkeypatch.setattr(storage, "is_saved", lambda video_id, user_id: False)
    assert storage.save_video(video.id, viewer.id) is True
    monkeypatch.undo()

    assert storage.is_saved(video.id, viewer.id) is True
    assert SavedVideo.query.filter_by(video_id=video.id, user_id=viewer.id).count() == 1
