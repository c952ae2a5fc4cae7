"""Change feed subscriptions and the realtime stream built on them."""

import asyncio
import json
import time
import uuid

import pytest
from anyio import to_thread
from starlette.concurrency import run_in_threadpool

from lostfound.utils import change_feed
from lostfound.utils.change_feed import DELETE, INSERT, UPDATE, ChangeFeed
from lostfound.routers.realtime import stream_subscription


class TestChangeFeed:
    def test_filtered_subscription_sees_matching_rows_only(self):
        feed = ChangeFeed()
        user_id = uuid.uuid4()

        with feed.subscribe("notifications", {INSERT}, "user_id", user_id) as subscription:
            feed.publish("notifications", INSERT, {"user_id": str(uuid.uuid4()), "title": "not yours"})
            feed.publish("notifications", UPDATE, {"user_id": str(user_id), "title": "wrong event"})
            feed.publish("messages", INSERT, {"user_id": str(user_id), "title": "wrong table"})
            feed.publish("notifications", INSERT, {"user_id": str(user_id), "title": "yours"})

            change = subscription.get_nowait()
            assert change.new["title"] == "yours"
            assert subscription.get_nowait() is None

    def test_unfiltered_subscription_sees_whole_table(self):
        feed = ChangeFeed()

        with feed.subscribe("items") as subscription:
            feed.publish("items", INSERT, {"id": "1"})
            feed.publish("items", DELETE, {"id": "1"})

            assert subscription.get_nowait().event == INSERT
            assert subscription.get_nowait().event == DELETE

    def test_subscription_released_on_exit(self):
        feed = ChangeFeed()

        with feed.subscribe("claims"):
            assert feed.subscriber_count == 1

        assert feed.subscriber_count == 0

    def test_subscription_released_on_error(self):
        feed = ChangeFeed()

        with pytest.raises(RuntimeError):
            with feed.subscribe("claims"):
                raise RuntimeError("consumer crashed")

        assert feed.subscriber_count == 0

    def test_unknown_event_is_rejected(self):
        feed = ChangeFeed()

        with pytest.raises(ValueError):
            with feed.subscribe("claims", {"TRUNCATE"}):
                pass

        assert feed.subscriber_count == 0

    def test_full_queue_drops_events(self, monkeypatch):
        monkeypatch.setattr(change_feed, "MAX_PENDING_EVENTS", 1)
        feed = ChangeFeed()

        with feed.subscribe("items") as subscription:
            feed.publish("items", INSERT, {"id": "1"})
            feed.publish("items", INSERT, {"id": "2"})

            assert subscription.get_nowait().new["id"] == "1"
            assert subscription.get_nowait() is None

    def test_sse_format(self):
        change = change_feed.ChangeEvent(table="items", event=INSERT, new={"id": "1"})

        text = change.to_sse()

        assert text.startswith(f"id: {change.id}\nevent: INSERT\ndata: ")
        assert text.endswith("\n\n")
        payload = json.loads(text.split("data: ", 1)[1])
        assert payload["table"] == "items"
        assert payload["new"] == {"id": "1"}

    def test_publishes_model_rows(self, alice):
        feed = ChangeFeed()

        with feed.subscribe("profiles") as subscription:
            feed.publish("profiles", UPDATE, alice)
            change = subscription.get_nowait()

        assert change.new["id"] == str(alice.id)
        assert change.new["username"] == alice.username


class TestStream:
    def test_stream_delivers_changes_and_releases(self):
        feed = ChangeFeed()
        user_id = uuid.uuid4()

        async def scenario():
            stream = stream_subscription(
                feed, "notifications", frozenset({INSERT}), "user_id", user_id, poll_seconds=0.05
            )
            assert await stream.__anext__() == ": connected\n\n"
            assert feed.subscriber_count == 1

            assert await stream.__anext__() == ": keep-alive\n\n"

            feed.publish("notifications", INSERT, {"user_id": str(user_id), "title": "hello"})
            chunk = await stream.__anext__()

            await stream.aclose()
            return chunk

        chunk = asyncio.run(scenario())

        assert "event: INSERT" in chunk
        assert '"title": "hello"' in chunk
        assert feed.subscriber_count == 0

    def test_publish_from_worker_thread_reaches_stream(self):
        feed = ChangeFeed()
        user_id = uuid.uuid4()

        async def scenario():
            stream = stream_subscription(
                feed, "messages", frozenset({INSERT}), "recipient_id", user_id, poll_seconds=2
            )
            await stream.__anext__()

            # sync routes publish from threadpool threads
            await run_in_threadpool(
                feed.publish, "messages", INSERT, {"recipient_id": str(user_id), "message": "hi"}
            )
            chunk = await asyncio.wait_for(stream.__anext__(), timeout=1)

            await stream.aclose()
            return chunk

        assert '"message": "hi"' in asyncio.run(scenario())
        assert feed.subscriber_count == 0

    def test_idle_streams_leave_worker_threads_free(self):
        feed = ChangeFeed()

        async def scenario():
            limit = int(to_thread.current_default_thread_limiter().total_tokens)
            streams = [
                stream_subscription(
                    feed, "notifications", frozenset({INSERT}), "user_id", uuid.uuid4(), poll_seconds=5
                )
                for _ in range(limit + 5)
            ]
            for stream in streams:
                await stream.__anext__()

            # every stream is now parked waiting for its next change
            waiting = [asyncio.ensure_future(stream.__anext__()) for stream in streams]
            await asyncio.sleep(0.05)

            started = time.monotonic()
            result = await asyncio.wait_for(run_in_threadpool(lambda: 1), timeout=2)
            elapsed = time.monotonic() - started

            for task in waiting:
                task.cancel()
            await asyncio.gather(*waiting, return_exceptions=True)
            for stream in streams:
                await stream.aclose()

            return result, elapsed

        result, elapsed = asyncio.run(scenario())

        assert result == 1
        assert elapsed < 0.5
        assert feed.subscriber_count == 0


class TestRealtimeRoutes:
    def test_unknown_table(self, client, alice, headers_for):
        assert client.get("/realtime/items", headers=headers_for(alice)).status_code == 404

    def test_column_outside_allowed_filters(self, client, alice, headers_for):
        response = client.get(
            "/realtime/messages", params={"column": "item_id"}, headers=headers_for(alice)
        )
        assert response.status_code == 400

    def test_invalid_events(self, client, alice, headers_for):
        response = client.get(
            "/realtime/notifications", params={"events": "INSERT,TRUNCATE"}, headers=headers_for(alice)
        )
        assert response.status_code == 400

    def test_requires_sign_in(self, client):
        assert client.get("/realtime/notifications").status_code in (401, 403)
