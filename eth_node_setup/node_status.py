"""
Handles live checks against the provisioned node: service states and
JSON-RPC / Beacon API calls for sync status, peers and versions.
"""
import json
from typing import Dict, List

import requests

from . import systemd
from .clients import MEV_BOOST_PORT
from .config import NodeConfig

API_TIMEOUT = 5


def managed_services(config: NodeConfig) -> List[str]:
    services = [systemd.EXECUTION_SERVICE, systemd.CONSENSUS_SERVICE]
    if config.enable_mev_boost:
        services.append(systemd.MEV_BOOST_SERVICE)
    if config.enable_validator:
        services.append(systemd.VALIDATOR_SERVICE)
    if config.enable_monitoring:
        services += ['prometheus', 'prometheus-node-exporter']
        if config.enable_grafana:
            services.append('grafana-server')
    return services


def _rpc(api_url, method, params=None):
    headers = {'Content-Type': 'application/json'}
    payload = json.dumps({"jsonrpc": "2.0", "method": method, "params": params or [], "id": 1})
    response = requests.post(api_url, headers=headers, data=payload, timeout=API_TIMEOUT)
    response.raise_for_status()
    return response.json().get('result')


def _get_execution_sync_status(api_url):
    """
    Checks the execution client sync status via JSON-RPC.
    Returns 'Synced', 'Syncing (<percent>)', 'Error' or 'API Error'.
    """
    try:
        result = _rpc(api_url, 'eth_syncing')
    except (requests.RequestException, ValueError):
        return "API Error"
    if result is False:
        return "Synced"
    if isinstance(result, dict):
        try:
            current = int(result.get('currentBlock', '0x0'), 16)
            highest = int(result.get('highestBlock', '0x0'), 16)
        except (TypeError, ValueError):
            return "Syncing"
        if highest:
            return f"Syncing ({current / highest:.1%})"
        return "Syncing"
    return "Error"


def _get_execution_peers(api_url):
    try:
        return str(int(_rpc(api_url, 'net_peerCount'), 16))
    except (requests.RequestException, ValueError, TypeError):
        return "-"


def _get_execution_version(api_url):
    try:
        return _rpc(api_url, 'web3_clientVersion') or "-"
    except (requests.RequestException, ValueError):
        return "-"


def _get_consensus_sync_status(api_url):
    """
    Checks the consensus client sync status via Beacon API.
    Returns 'Synced', 'Syncing (<distance> slots behind)', 'Error' or 'API Error'.
    """
    try:
        response = requests.get(f"{api_url}/eth/v1/node/syncing", timeout=API_TIMEOUT)
        if response.status_code == 200:
            data = response.json().get('data', {})
            if not data.get('is_syncing', True):
                return "Synced"
            distance = data.get('sync_distance')
            return f"Syncing ({distance} slots behind)" if distance is not None else "Syncing"
        return "Error"
    except (requests.RequestException, ValueError):
        return "API Error"


def _get_consensus_peers(api_url):
    try:
        response = requests.get(f"{api_url}/eth/v1/node/peer_count", timeout=API_TIMEOUT)
        if response.status_code == 200:
            return str(response.json().get('data', {}).get('connected', '-'))
    except (requests.RequestException, ValueError):
        pass
    return "-"


def _get_consensus_version(api_url):
    try:
        response = requests.get(f"{api_url}/eth/v1/node/version", timeout=API_TIMEOUT)
        if response.status_code == 200:
            return response.json().get('data', {}).get('version', '-')
    except (requests.RequestException, ValueError):
        pass
    return "-"


def _get_mev_boost_status():
    try:
        response = requests.get(f"http://127.0.0.1:{MEV_BOOST_PORT}/eth/v1/builder/status", timeout=API_TIMEOUT)
        return "Relays OK" if response.status_code == 200 else f"HTTP {response.status_code}"
    except requests.RequestException:
        return "API Error"


def get_node_status(config: NodeConfig) -> Dict:
    """
    Gathers status for the local node: systemd service states plus sync,
    peer and version information from the client APIs.
    """
    el_api_url = f"http://127.0.0.1:{config.execution_rpc_port}"
    cl_api_url = f"http://127.0.0.1:{config.beacon_api_port}"

    results = {
        'services': {service: systemd.is_active(service) for service in managed_services(config)},
        'execution': {
            'client': config.execution_client,
            'sync': _get_execution_sync_status(el_api_url),
            'peers': _get_execution_peers(el_api_url),
            'version': _get_execution_version(el_api_url),
        },
        'consensus': {
            'client': config.consensus_client,
            'sync': _get_consensus_sync_status(cl_api_url),
            'peers': _get_consensus_peers(cl_api_url),
            'version': _get_consensus_version(cl_api_url),
        },
    }
    if config.enable_mev_boost:
        results['mev_boost'] = _get_mev_boost_status()
    return results
