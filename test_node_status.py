"""
Tests for live node status probes with the HTTP layer stubbed out
"""
import json

import pytest
import requests

from eth_node_setup import node_status
from eth_node_setup.config import NodeConfig

EL_URL = 'http://127.0.0.1:8545'
CL_URL = 'http://127.0.0.1:5052'


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


@pytest.fixture
def fake_node(monkeypatch):
    """Stub JSON-RPC and Beacon API answers; tests adjust the dicts"""
    rpc = {
        'eth_syncing': False,
        'net_peerCount': '0x19',
        'web3_clientVersion': 'Geth/v1.14.0-stable/linux-amd64/go1.22',
    }
    beacon = {
        '/eth/v1/node/syncing': {'data': {'is_syncing': False, 'sync_distance': '0'}},
        '/eth/v1/node/peer_count': {'data': {'connected': '80'}},
        '/eth/v1/node/version': {'data': {'version': 'Lighthouse/v5.3.0'}},
        '/eth/v1/builder/status': {},
    }

    def fake_post(url, headers=None, data=None, timeout=None):
        method = json.loads(data)['method']
        return FakeResponse({'jsonrpc': '2.0', 'id': 1, 'result': rpc[method]})

    def fake_get(url, timeout=None):
        path = '/' + url.split('/', 3)[3]
        return FakeResponse(beacon[path])

    monkeypatch.setattr(node_status.requests, 'post', fake_post)
    monkeypatch.setattr(node_status.requests, 'get', fake_get)
    monkeypatch.setattr(node_status.systemd, 'is_active', lambda service: 'active')
    return rpc, beacon


def test_synced_node(fake_node):
    status = node_status.get_node_status(NodeConfig())
    assert status['services'] == {'eth-execution': 'active', 'eth-consensus': 'active'}
    assert status['execution'] == {
        'client': 'geth',
        'sync': 'Synced',
        'peers': '25',
        'version': 'Geth/v1.14.0-stable/linux-amd64/go1.22',
    }
    assert status['consensus']['sync'] == 'Synced'
    assert status['consensus']['peers'] == '80'
    assert status['consensus']['version'] == 'Lighthouse/v5.3.0'
    assert 'mev_boost' not in status


def test_syncing_node(fake_node):
    rpc, beacon = fake_node
    rpc['eth_syncing'] = {'currentBlock': '0x32', 'highestBlock': '0x64'}
    beacon['/eth/v1/node/syncing'] = {'data': {'is_syncing': True, 'sync_distance': '1200'}}

    assert node_status._get_execution_sync_status(EL_URL) == 'Syncing (50.0%)'
    assert node_status._get_consensus_sync_status(CL_URL) == 'Syncing (1200 slots behind)'


def test_mev_boost_and_validator_services(fake_node):
    config = NodeConfig(enable_mev_boost=True, enable_validator=True)
    status = node_status.get_node_status(config)
    assert list(status['services']) == ['eth-execution', 'eth-consensus', 'mev-boost', 'eth-validator']
    assert status['mev_boost'] == 'Relays OK'


def test_monitoring_services_listed():
    services = node_status.managed_services(NodeConfig(enable_monitoring=True, enable_grafana=False))
    assert services[-2:] == ['prometheus', 'prometheus-node-exporter']


def test_unreachable_clients(monkeypatch):
    def refuse(*args, **kwargs):
        raise requests.ConnectionError('connection refused')

    monkeypatch.setattr(node_status.requests, 'post', refuse)
    monkeypatch.setattr(node_status.requests, 'get', refuse)

    assert node_status._get_execution_sync_status(EL_URL) == 'API Error'
    assert node_status._get_execution_peers(EL_URL) == '-'
    assert node_status._get_consensus_sync_status(CL_URL) == 'API Error'
    assert node_status._get_consensus_version(CL_URL) == '-'
    assert node_status._get_mev_boost_status() == 'API Error'


def test_beacon_api_error_status(monkeypatch):
    monkeypatch.setattr(node_status.requests, 'get', lambda url, timeout=None: FakeResponse({}, 503))
    assert node_status._get_consensus_sync_status(CL_URL) == 'Error'
    assert node_status._get_mev_boost_status() == 'HTTP 503'
