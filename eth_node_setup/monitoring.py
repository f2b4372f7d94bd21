"""
Monitoring steps: Prometheus with node exporter, and Grafana.
"""
import logging
import tempfile
from pathlib import Path
from typing import Dict, List

import yaml

from .clients import (
    CONSENSUS_METRICS_PORT,
    EXECUTION_METRICS_PORT,
    VALIDATOR_METRICS_PORT,
)
from .config import NodeConfig
from .context import ProvisionContext
from .downloads import download_file
from .system_setup import APT_ENV

logger = logging.getLogger(__name__)

PROMETHEUS_CONFIG = '/etc/prometheus/prometheus.yml'
NODE_EXPORTER_PORT = 9100
PROMETHEUS_PORT = 9090
GRAFANA_PORT = 3000

GRAFANA_KEY_URL = 'https://apt.grafana.com/gpg.key'
GRAFANA_KEYRING = '/etc/apt/keyrings/grafana.gpg'
GRAFANA_SOURCES = '/etc/apt/sources.list.d/grafana.list'
GRAFANA_DATASOURCE = '/etc/grafana/provisioning/datasources/eth-node.yaml'

# Metrics paths differ per client
EXECUTION_METRICS_PATHS = {
    'geth': '/debug/metrics/prometheus',
    'erigon': '/debug/metrics/prometheus',
}
CONSENSUS_METRICS_PATH = '/metrics'


def scrape_jobs(config: NodeConfig) -> List[Dict]:
    """Prometheus scrape jobs for the host and every enabled client"""
    jobs = [
        {'job_name': 'node', 'static_configs': [{'targets': [f"127.0.0.1:{NODE_EXPORTER_PORT}"]}]},
        {
            'job_name': 'execution',
            'metrics_path': EXECUTION_METRICS_PATHS.get(config.execution_client, '/metrics'),
            'static_configs': [{
                'targets': [f"127.0.0.1:{EXECUTION_METRICS_PORT}"],
                'labels': {'client': config.execution_client},
            }],
        },
        {
            'job_name': 'consensus',
            'metrics_path': CONSENSUS_METRICS_PATH,
            'static_configs': [{
                'targets': [f"127.0.0.1:{CONSENSUS_METRICS_PORT}"],
                'labels': {'client': config.consensus_client},
            }],
        },
    ]
    if config.enable_validator:
        jobs.append({
            'job_name': 'validator',
            'metrics_path': CONSENSUS_METRICS_PATH,
            'static_configs': [{
                'targets': [f"127.0.0.1:{VALIDATOR_METRICS_PORT}"],
                'labels': {'client': config.consensus_client},
            }],
        })
    return jobs


def prometheus_config(config: NodeConfig) -> str:
    document = {
        'global': {'scrape_interval': '15s', 'evaluation_interval': '15s'},
        'scrape_configs': scrape_jobs(config),
    }
    return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)


def install_monitoring(ctx: ProvisionContext):
    runner = ctx.runner
    runner.run(['apt-get', 'install', '-y', 'prometheus', 'prometheus-node-exporter'], env=APT_ENV)
    runner.write_file(PROMETHEUS_CONFIG, prometheus_config(ctx.config))
    runner.run(['promtool', 'check', 'config', PROMETHEUS_CONFIG])
    runner.run(['systemctl', 'enable', '--now', 'prometheus-node-exporter'])
    runner.run(['systemctl', 'enable', 'prometheus'])
    runner.run(['systemctl', 'restart', 'prometheus'])


def grafana_datasource() -> str:
    document = {
        'apiVersion': 1,
        'datasources': [{
            'name': 'Prometheus',
            'type': 'prometheus',
            'access': 'proxy',
            'url': f"http://127.0.0.1:{PROMETHEUS_PORT}",
            'isDefault': True,
        }],
    }
    return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)


def install_grafana(ctx: ProvisionContext):
    runner = ctx.runner
    runner.make_dirs('/etc/apt/keyrings')
    with tempfile.TemporaryDirectory(prefix='grafana-') as tmp:
        key_path = Path(tmp) / 'grafana.gpg.key'
        if runner.dry_run:
            logger.info(f"[dry-run] download {GRAFANA_KEY_URL}")
        else:
            download_file(GRAFANA_KEY_URL, key_path)
        runner.run(['gpg', '--batch', '--yes', '--dearmor', '-o', GRAFANA_KEYRING, str(key_path)])
    runner.write_file(GRAFANA_SOURCES,
                      f"deb [signed-by={GRAFANA_KEYRING}] https://apt.grafana.com stable main\n")
    runner.run(['apt-get', 'update'], env=APT_ENV)
    runner.run(['apt-get', 'install', '-y', 'grafana'], env=APT_ENV)
    runner.write_file(GRAFANA_DATASOURCE, grafana_datasource())
    runner.run(['systemctl', 'enable', '--now', 'grafana-server'])

    if ctx.config.grafana_admin_password:
        password = ctx.config.grafana_admin_password
        runner.run(['grafana-cli', 'admin', 'reset-admin-password', password], redact=[password])
    else:
        logger.warning("GRAFANA_ADMIN_PASSWORD is empty; Grafana keeps its default admin password")
        ctx.notes.append("Change the Grafana admin password (default admin/admin)")
    ctx.notes.append(f"Grafana listens on port {GRAFANA_PORT}; reach it through an SSH tunnel")
