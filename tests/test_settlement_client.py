from unittest.mock import Mock

import pytest
import requests

from fitstake.clients.settlement import SettlementGatewayClient
from fitstake.errors import SettlementError


def _response(payload, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    else:
        response.raise_for_status.return_value = None
    return response


@pytest.fixture
def session():
    session = Mock(spec=requests.Session)
    session.headers = {}
    return session


def test_record_completions_posts_accounts_and_waits_for_confirmation(session) -> None:
    session.post.return_value = _response({"signature": "sig-1"})
    session.get.return_value = _response({"status": "confirmed"})
    client = SettlementGatewayClient(base_url="http://gateway/", token="secret", session=session)

    assert client.record_completions("pda-1", ["w1", "w2"]) == "sig-1"

    session.post.assert_called_once_with(
        "http://gateway/challenges/pda-1/completions", json={"accounts": ["w1", "w2"]}, timeout=(3, 30)
    )
    session.get.assert_called_once_with("http://gateway/transactions/sig-1", timeout=(3, 10))
    assert session.headers["Authorization"] == "Bearer secret"


def test_finalize_failed_transaction_raises(session) -> None:
    session.post.return_value = _response({"signature": "sig-2"})
    session.get.return_value = _response({"status": "failed"})
    client = SettlementGatewayClient(base_url="http://gateway", token="", session=session)

    with pytest.raises(SettlementError):
        client.finalize("pda-1")
    assert session.get.call_count == 1


def test_gateway_error_raises_settlement_error(session) -> None:
    session.post.return_value = _response({"error": "unavailable"}, status_code=503)
    client = SettlementGatewayClient(base_url="http://gateway", token="", session=session)

    with pytest.raises(SettlementError):
        client.record_completions("pda-1", ["w1"])
    session.get.assert_not_called()
