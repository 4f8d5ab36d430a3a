import logging

import pytest

from backoffice.realtime.hub import RECEIVE_REPLY, TicketHub, topic_for


@pytest.mark.asyncio
async def test_publish_reaches_every_subscriber_of_the_topic():
    hub = TicketHub()
    topic = topic_for("ticket-1")

    async with hub.subscribe(topic) as first, hub.subscribe(topic) as second, hub.subscribe(
        topic_for("ticket-2")
    ) as other:
        delivered = await hub.publish(topic, RECEIVE_REPLY, {"reply_id": 1})

        assert delivered == 2
        assert (await first.get()).to_frame() == {"event": "ReceiveReply", "data": {"reply_id": 1}}
        assert (await second.get()).data == {"reply_id": 1}
        assert other.empty()


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_a_no_op():
    hub = TicketHub()
    assert await hub.publish(topic_for("nobody"), RECEIVE_REPLY, {}) == 0


@pytest.mark.asyncio
async def test_full_queue_drops_event_for_that_subscriber(caplog):
    hub = TicketHub(queue_size=1)
    topic = topic_for("ticket-1")

    async with hub.subscribe(topic) as slow:
        await hub.publish(topic, RECEIVE_REPLY, {"reply_id": 1})
        with caplog.at_level(logging.WARNING, logger="backoffice.realtime.hub"):
            delivered = await hub.publish(topic, RECEIVE_REPLY, {"reply_id": 2})

        assert delivered == 0
        assert slow.qsize() == 1
        assert (await slow.get()).data == {"reply_id": 1}
    assert "slow subscriber" in caplog.text


@pytest.mark.asyncio
async def test_leaving_unsubscribes_even_on_error():
    hub = TicketHub()
    topic = topic_for("ticket-1")

    with pytest.raises(RuntimeError):
        async with hub.subscribe(topic):
            assert hub.subscriber_count(topic) == 1
            raise RuntimeError("socket closed")

    assert hub.subscriber_count(topic) == 0
    assert await hub.publish(topic, RECEIVE_REPLY, {}) == 0
