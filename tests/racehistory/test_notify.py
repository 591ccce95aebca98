"""Tests for the WebSocket pusher and the SQS dispatcher."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from racehistory.events import SQSDispatcher
from racehistory.exceptions import NotificationError, RaceHistoryError
from racehistory.ingestion import RaceIngestionRequest
from racehistory.notify import Pusher
from racehistory.store import WebSocketConnection


def _gone() -> ClientError:
    return ClientError({"Error": {"Code": "GoneException", "Message": "gone"}}, "PostToConnection")


def _registry(*connection_ids: str) -> MagicMock:
    registry = MagicMock()
    registry.get_connections_by_driver.return_value = [
        WebSocketConnection(driver_id=1001, connection_id=c) for c in connection_ids
    ]
    return registry


class TestPusher:
    def test_push_message_shape(self) -> None:
        client = MagicMock()
        pusher = Pusher(client, _registry())
        assert pusher.push("abc=", "raceIngested", {"raceId": 1700000000}) is True
        kwargs = client.post_to_connection.call_args.kwargs
        assert kwargs["ConnectionId"] == "abc="
        assert json.loads(kwargs["Data"]) == {"action": "raceIngested", "payload": {"raceId": 1700000000}}

    def test_push_gone(self) -> None:
        client = MagicMock()
        client.post_to_connection.side_effect = _gone()
        assert Pusher(client, _registry()).push("abc=", "x", None) is False

    def test_push_other_error(self) -> None:
        client = MagicMock()
        client.post_to_connection.side_effect = ClientError(
            {"Error": {"Code": "LimitExceededException", "Message": "slow down"}}, "PostToConnection"
        )
        with pytest.raises(NotificationError):
            Pusher(client, _registry()).push("abc=", "x", None)

    def test_push_transport_error(self) -> None:
        client = MagicMock()
        client.post_to_connection.side_effect = EndpointConnectionError(endpoint_url="https://ws.example.com")
        with pytest.raises(NotificationError):
            Pusher(client, _registry()).push("abc=", "x", None)

    def test_broadcast_prunes_gone(self) -> None:
        client = MagicMock()
        client.post_to_connection.side_effect = [None, _gone(), None]
        registry = _registry("a", "b", "c")
        delivered = Pusher(client, registry).broadcast(1001, "ingestionChunkComplete", {"ingestedTo": "x"})
        assert delivered == 2
        registry.delete_connection.assert_called_once_with(1001, "b")

    def test_broadcast_no_connections(self) -> None:
        client = MagicMock()
        assert Pusher(client, _registry()).broadcast(1001, "x", None) == 0
        client.post_to_connection.assert_not_called()

    def test_disconnect(self) -> None:
        client = MagicMock()
        registry = _registry()
        Pusher(client, registry).disconnect(1001, "abc=")
        client.delete_connection.assert_called_once_with(ConnectionId="abc=")
        registry.delete_connection.assert_called_once_with(1001, "abc=")

    def test_disconnect_already_gone(self) -> None:
        client = MagicMock()
        client.delete_connection.side_effect = _gone()
        registry = _registry()
        Pusher(client, registry).disconnect(1001, "abc=")
        registry.delete_connection.assert_called_once_with(1001, "abc=")


class TestSQSDispatcher:
    def test_publishes_request_with_wire_names(self) -> None:
        client = MagicMock()
        client.send_message.return_value = {"MessageId": "m-1"}
        request = RaceIngestionRequest(driver_id=1001, access_token="tok", notify_connection_id="abc=")
        SQSDispatcher(client, "https://sqs.us-east-1.amazonaws.com/123/ingest").publish_event(request)

        kwargs = client.send_message.call_args.kwargs
        assert kwargs["QueueUrl"] == "https://sqs.us-east-1.amazonaws.com/123/ingest"
        assert json.loads(kwargs["MessageBody"]) == {
            "driverID": 1001,
            "iRacingAccessToken": "tok",
            "notifyConnectionID": "abc=",
        }

    def test_publish_failure(self) -> None:
        client = MagicMock()
        client.send_message.side_effect = ClientError(
            {"Error": {"Code": "AWS.SimpleQueueService.NonExistentQueue", "Message": "no queue"}}, "SendMessage"
        )
        request = RaceIngestionRequest(driver_id=1001, access_token="tok")
        with pytest.raises(RaceHistoryError):
            SQSDispatcher(client, "q").publish_event(request)
