"""Test topic publishing, subscription and fan-out to queues"""
import json

import pytest

from topoflow.messaging.errors import InvalidRequestError, NotFoundError
from topoflow.messaging.pubsub import PubSubClient

from conftest import RecordingClient


async def _subscribed_queue(services):
    url = await services.queues.create_queue("orders")
    arn = await services.queues.resolve_identity(url)
    topic = await services.topics.create_topic("order-events")
    await services.topics.subscribe_queue(topic, arn)
    return url, arn, topic


@pytest.mark.asyncio
async def test_publish_without_subject_omits_field():
    """Test that no Subject key is sent when no subject is given"""
    client = RecordingClient({"publish": {"MessageId": "m-1"}})
    topics = PubSubClient(client)

    message_id = await topics.publish("arn:topic", "hello")

    assert message_id == "m-1"
    assert "Subject" not in client.params("publish")


@pytest.mark.asyncio
async def test_publish_with_empty_subject_omits_field():
    """Test that an empty subject is treated as absent"""
    client = RecordingClient({"publish": {"MessageId": "m-1"}})
    topics = PubSubClient(client)

    await topics.publish("arn:topic", "hello", "")

    assert "Subject" not in client.params("publish")


@pytest.mark.asyncio
async def test_publish_with_subject():
    """Test that a given subject is sent"""
    client = RecordingClient({"publish": {"MessageId": "m-1"}})
    topics = PubSubClient(client)

    await topics.publish("arn:topic", "hello", "Greeting")

    assert client.params("publish") == {"TopicArn": "arn:topic", "Message": "hello", "Subject": "Greeting"}


@pytest.mark.asyncio
async def test_notification_without_subject(services):
    """Test that a subscribed queue receives an envelope without a Subject"""
    url, _, topic = await _subscribed_queue(services)

    await services.topics.publish(topic, json.dumps({"n": 1}))
    [message] = await services.queues.receive(url, wait_seconds=0)

    envelope = message.decode()
    assert envelope["Type"] == "Notification"
    assert envelope["TopicArn"] == topic
    assert json.loads(envelope["Message"]) == {"n": 1}
    assert "Subject" not in envelope


@pytest.mark.asyncio
async def test_notification_with_subject(services):
    """Test that the subject is carried in the delivered envelope"""
    url, _, topic = await _subscribed_queue(services)

    await services.topics.publish(topic, "hello", "Test Subject")
    [message] = await services.queues.receive(url, wait_seconds=0)

    assert message.decode()["Subject"] == "Test Subject"


@pytest.mark.asyncio
async def test_subscribe_is_idempotent(services):
    """Test that subscribing the same queue twice yields one subscription"""
    _, arn, topic = await _subscribed_queue(services)

    await services.topics.subscribe_queue(topic, arn)
    subscriptions = await services.topics.list_subscriptions(topic)

    assert len(subscriptions) == 1
    assert subscriptions[0].protocol == "sqs"
    assert subscriptions[0].endpoint == arn


@pytest.mark.asyncio
async def test_subscribe_unknown_queue(services):
    """Test that subscribing a queue that does not exist is rejected"""
    topic = await services.topics.create_topic("order-events")

    with pytest.raises(InvalidRequestError):
        await services.topics.subscribe_queue(topic, "arn:aws:sqs:us-east-1:000000000000:missing")


@pytest.mark.asyncio
async def test_publish_to_unknown_topic(services):
    """Test that publishing to a missing topic fails with NotFound"""
    with pytest.raises(NotFoundError):
        await services.topics.publish("arn:aws:sns:us-east-1:000000000000:missing", "hello")


@pytest.mark.asyncio
async def test_list_topics(services):
    """Test listing topic identities"""
    first = await services.topics.create_topic("a")
    second = await services.topics.create_topic("b")

    assert await services.topics.list_topics() == [first, second]


@pytest.mark.asyncio
async def test_fan_out_to_every_subscriber(services):
    """Test that one publish reaches every subscribed queue"""
    topic = await services.topics.create_topic("order-events")
    urls = []
    for name in ("billing", "shipping"):
        url = await services.queues.create_queue(name)
        await services.topics.subscribe_queue(topic, await services.queues.resolve_identity(url))
        urls.append(url)

    await services.topics.publish(topic, "hello")

    for url in urls:
        [message] = await services.queues.receive(url, wait_seconds=0)
        assert message.decode()["Message"] == "hello"
