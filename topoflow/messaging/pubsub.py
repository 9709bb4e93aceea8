from typing import List, Optional

from topoflow.messaging.facade import ServiceFacade
from topoflow.messaging.models import SubscriptionInfo


class PubSubClient(ServiceFacade):
    """Topic operations: create, publish, subscribe and list"""
    service_name = "pubsub"

    async def create_topic(self, name: str) -> str:
        """Create a topic

        Returns:
            The topic identity (ARN)
        """
        response = await self._call("create_topic", Name=name)
        topic_arn = response["TopicArn"]
        self._logger.info(f"Topic created: {name} (ARN: {topic_arn})")
        return topic_arn

    async def publish(self, topic_identity: str, body: str, subject: Optional[str] = None) -> str:
        """Publish a message to a topic

        The subject field is left out of the request entirely when no
        subject is given; an empty subject is never sent.

        Returns:
            The backend message id
        """
        params = {"TopicArn": topic_identity, "Message": body}
        if subject:
            params["Subject"] = subject
        response = await self._call("publish", **params)
        message_id = response["MessageId"]
        self._logger.info(f"Message published to {topic_identity}: {message_id}")
        return message_id

    async def subscribe_endpoint(self, topic_identity: str, protocol: str, endpoint_identity: str) -> str:
        response = await self._call(
            "subscribe", TopicArn=topic_identity, Protocol=protocol, Endpoint=endpoint_identity
        )
        subscription_arn = response["SubscriptionArn"]
        self._logger.info(f"{protocol} endpoint subscribed to topic. SubscriptionArn: {subscription_arn}")
        return subscription_arn

    async def subscribe_queue(self, topic_identity: str, queue_identity: str) -> str:
        return await self.subscribe_endpoint(topic_identity, "sqs", queue_identity)

    async def list_subscriptions(self, topic_identity: str) -> List[SubscriptionInfo]:
        response = await self._call("list_subscriptions_by_topic", TopicArn=topic_identity)
        subscriptions = [
            SubscriptionInfo(
                protocol=raw["Protocol"],
                endpoint=raw["Endpoint"],
                identity=raw.get("SubscriptionArn"),
            )
            for raw in response.get("Subscriptions", [])
        ]
        self._logger.info(f"Subscriptions for topic {topic_identity}:")
        for subscription in subscriptions:
            self._logger.info(f"  - {subscription.protocol}: {subscription.endpoint}")
        return subscriptions

    async def list_topics(self) -> List[str]:
        response = await self._call("list_topics")
        topics = [raw["TopicArn"] for raw in response.get("Topics", [])]
        self._logger.info("Available topics:")
        for topic_arn in topics:
            self._logger.info(f"  - {topic_arn}")
        return topics
