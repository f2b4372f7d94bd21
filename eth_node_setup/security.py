"""
Host hardening: firewall, fail2ban, SSH, unattended upgrades and sysctl tuning.
"""
import logging
from pathlib import Path
from typing import List, Tuple

from .clients import consensus_udp_ports
from .config import NodeConfig
from .context import ProvisionContext
from .runner import CommandError

logger = logging.getLogger(__name__)

SSHD_DROPIN = '/etc/ssh/sshd_config.d/99-eth-node.conf'
FAIL2BAN_JAIL = '/etc/fail2ban/jail.local'
SYSCTL_DROPIN = '/etc/sysctl.d/99-eth-node.conf'
AUTO_UPGRADES = '/etc/apt/apt.conf.d/20auto-upgrades'


def firewall_rules(config: NodeConfig) -> List[Tuple[int, str, str]]:
    """
    Inbound rules as (port, protocol, comment). Only SSH and the P2P ports are
    opened; every API and metrics endpoint stays bound to localhost.
    """
    rules = [
        (config.ssh_port, 'tcp', 'SSH'),
        (config.execution_p2p_port, 'tcp', 'execution p2p'),
        (config.execution_p2p_port, 'udp', 'execution discovery'),
        (config.consensus_p2p_port, 'tcp', 'consensus p2p'),
        (config.consensus_p2p_port, 'udp', 'consensus discovery'),
    ]
    for port in consensus_udp_ports(config):
        rules.append((port, 'udp', 'consensus quic'))
    return rules


def configure_firewall(ctx: ProvisionContext):
    runner = ctx.runner
    runner.run(['ufw', 'default', 'deny', 'incoming'])
    runner.run(['ufw', 'default', 'allow', 'outgoing'])
    for port, proto, comment in firewall_rules(ctx.config):
        runner.run(['ufw', 'allow', f"{port}/{proto}", 'comment', comment])
    runner.run(['ufw', '--force', 'enable'])


def fail2ban_jail(config: NodeConfig) -> str:
    return f"""[DEFAULT]
bantime = 1h
findtime = 10m
maxretry = 5

[sshd]
enabled = true
port = {config.ssh_port}
backend = systemd
"""


def configure_fail2ban(ctx: ProvisionContext):
    ctx.runner.write_file(FAIL2BAN_JAIL, fail2ban_jail(ctx.config))
    ctx.runner.run(['systemctl', 'enable', 'fail2ban'])
    ctx.runner.run(['systemctl', 'restart', 'fail2ban'])


def sshd_dropin(config: NodeConfig) -> str:
    return f"""# Managed by eth-node-setup
Port {config.ssh_port}
PasswordAuthentication no
KbdInteractiveAuthentication no
PermitRootLogin prohibit-password
PubkeyAuthentication yes
MaxAuthTries 3
X11Forwarding no
"""


def harden_ssh(ctx: ProvisionContext):
    runner = ctx.runner
    dropin = Path(SSHD_DROPIN)
    previous = dropin.read_text() if not runner.dry_run and dropin.is_file() else None

    runner.write_file(dropin, sshd_dropin(ctx.config), mode=0o600)
    # sshd must accept the drop-in before the restart
    try:
        runner.run(['sshd', '-t'])
    except CommandError:
        # A rejected drop-in would stop sshd at its next restart
        if previous is None:
            runner.remove_file(dropin)
        else:
            runner.write_file(dropin, previous, mode=0o600)
        logger.error(f"sshd rejected {dropin}; the previous SSH configuration was restored")
        raise
    runner.run(['systemctl', 'restart', 'ssh'])
    logger.warning("SSH password authentication is now disabled; make sure your key works before logging out")


AUTO_UPGRADES_CONFIG = """APT::Periodic::Update-Package-Lists "1";
APT::Periodic::Unattended-Upgrade "1";
APT::Periodic::AutocleanInterval "7";
"""


def configure_auto_updates(ctx: ProvisionContext):
    ctx.runner.write_file(AUTO_UPGRADES, AUTO_UPGRADES_CONFIG)
    ctx.runner.run(['systemctl', 'enable', '--now', 'unattended-upgrades'])


SYSCTL_SETTINGS = {
    'vm.swappiness': '10',
    'net.core.rmem_max': '16777216',
    'net.core.wmem_max': '16777216',
    'net.ipv4.tcp_rmem': '4096 87380 16777216',
    'net.ipv4.tcp_wmem': '4096 65536 16777216',
    'net.core.netdev_max_backlog': '30000',
    'net.ipv4.tcp_syncookies': '1',
    'net.ipv4.conf.all.rp_filter': '1',
    'net.ipv4.conf.all.accept_redirects': '0',
    'net.ipv4.conf.all.send_redirects': '0',
    'fs.file-max': '2097152',
}


def tune_sysctl(ctx: ProvisionContext):
    content = "# Managed by eth-node-setup\n" + ''.join(
        f"{key} = {value}\n" for key, value in SYSCTL_SETTINGS.items()
    )
    ctx.runner.write_file(SYSCTL_DROPIN, content)
    ctx.runner.run(['sysctl', '--system'])
