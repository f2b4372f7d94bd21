"""
Downloads client releases from GitHub and installs their binaries.
"""
import logging
import re
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import requests

from .clients import ClientSpec, detect_arch
from .config import NodeConfig
from .runner import CommandRunner, ProvisioningError

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
REQUEST_TIMEOUT = 30
CHUNK_SIZE = 1024 * 1024
OPT_DIR = Path('/opt')


def latest_release(repo: str) -> Dict:
    """
    Get the latest (non-prerelease) release of a GitHub repository.

    Returns:
        Dict with 'tag_name' and 'assets' (each with 'name' and 'browser_download_url')
    """
    url = f"{GITHUB_API}/repos/{repo}/releases/latest"
    try:
        response = requests.get(url, headers={'Accept': 'application/vnd.github+json'}, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        raise ProvisioningError(f"Cannot reach GitHub for {repo}: {e}") from e

    if response.status_code != 200:
        raise ProvisioningError(f"GitHub release lookup for {repo} failed with HTTP {response.status_code}")
    data = response.json()
    logger.info(f"Latest {repo} release: {data.get('tag_name', 'unknown')}")
    return data


def select_asset(assets: List[Dict], pattern: str, arch: Dict[str, str]) -> Dict:
    """Pick the release asset whose name matches the architecture-specific pattern"""
    regex = re.compile(pattern.format(**arch))
    matches = [asset for asset in assets if regex.search(asset.get('name', ''))]
    if not matches:
        names = ', '.join(asset.get('name', '?') for asset in assets) or 'none'
        raise ProvisioningError(f"No release asset matches '{regex.pattern}' (available: {names})")
    # Prefer the shortest name: skips .asc/.sha256 siblings and portable variants
    return min(matches, key=lambda asset: len(asset['name']))


def download_file(url: str, dest: Path) -> Path:
    """Stream a URL to disk"""
    logger.info(f"Downloading {url}")
    try:
        with requests.get(url, stream=True, timeout=REQUEST_TIMEOUT) as response:
            response.raise_for_status()
            with open(dest, 'wb') as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    f.write(chunk)
    except requests.RequestException as e:
        raise ProvisioningError(f"Download of {url} failed: {e}") from e
    logger.info(f"Saved {dest} ({dest.stat().st_size} bytes)")
    return dest


class ReleaseInstaller:
    """Installs a client described by a ClientSpec"""

    def __init__(self, runner: CommandRunner, config: NodeConfig, arch: Optional[Dict[str, str]] = None):
        self.runner = runner
        self.config = config
        self.arch = arch or detect_arch()

    def install(self, spec: ClientSpec) -> str:
        """
        Install a client and return the installed version (or a placeholder in dry-run).
        """
        logger.info(f"Installing {spec.name} ({spec.method})")
        if spec.method == 'apt':
            return self._install_apt(spec)

        if self.runner.dry_run:
            # No network access in dry-run mode; record the install layout only
            self._record_dry_run(spec)
            return 'latest'

        release = latest_release(spec.repo)
        version = release.get('tag_name', '').lstrip('v')

        with tempfile.TemporaryDirectory(prefix=f"{spec.name}-") as tmp:
            tmp_dir = Path(tmp)
            if spec.method == 'binaries':
                self._install_binaries(spec, release, tmp_dir)
            else:
                if spec.method == 'url-archive':
                    url = spec.url_template.format(version=version)
                    name = url.rsplit('/', 1)[-1]
                else:
                    asset = select_asset(release.get('assets', []), spec.asset_pattern, self.arch)
                    url, name = asset['browser_download_url'], asset['name']
                archive = download_file(url, tmp_dir / name)
                self._install_archive(spec, archive, tmp_dir)

        logger.info(f"{spec.name} {version} installed")
        return version

    def _install_apt(self, spec: ClientSpec) -> str:
        if spec.ppa:
            self.runner.run(['add-apt-repository', '-y', spec.ppa])
            self.runner.run(['apt-get', 'update'])
        self.runner.run(['apt-get', 'install', '-y'] + list(spec.apt_packages))
        return 'apt'

    def _install_binaries(self, spec: ClientSpec, release: Dict, tmp_dir: Path):
        for pattern, binary in spec.binary_assets.items():
            asset = select_asset(release.get('assets', []), pattern, self.arch)
            path = download_file(asset['browser_download_url'], tmp_dir / asset['name'])
            self.runner.run(['install', '-m', '0755', str(path), f"{self.config.install_dir}/{binary}"])

    def _extract(self, archive: Path, dest: Path):
        self.runner.make_dirs(dest)
        if archive.name.endswith('.zip'):
            self.runner.run(['unzip', '-o', '-q', str(archive), '-d', str(dest)])
        else:
            self.runner.run(['tar', '-xzf', str(archive), '-C', str(dest)])

    def _install_archive(self, spec: ClientSpec, archive: Path, tmp_dir: Path):
        if spec.opt_install:
            opt_dir = OPT_DIR / spec.name
            self.runner.run(['rm', '-rf', str(opt_dir)])
            self._extract(archive, opt_dir)
            # Tarballs usually wrap everything in a versioned top-level directory
            top_level = [p for p in opt_dir.iterdir()]
            root = top_level[0] if len(top_level) == 1 and top_level[0].is_dir() else opt_dir
            for binary in spec.binaries:
                candidates = [root / 'bin' / binary, root / binary]
                target = next((c for c in candidates if c.exists()), None)
                if target is None:
                    raise ProvisioningError(f"{binary} not found in {spec.name} archive")
                self.runner.run(['ln', '-sf', str(target), f"{self.config.install_dir}/{binary}"])
            return

        extract_dir = tmp_dir / 'extract'
        self._extract(archive, extract_dir)
        for binary in spec.binaries:
            found = [p for p in extract_dir.rglob(binary) if p.is_file()]
            if not found:
                raise ProvisioningError(f"{binary} not found in {archive.name}")
            self.runner.run(['install', '-m', '0755', str(found[0]), f"{self.config.install_dir}/{binary}"])

    def _record_dry_run(self, spec: ClientSpec):
        source = spec.url_template or f"github.com/{spec.repo} latest release"
        if spec.opt_install:
            for binary in spec.binaries:
                self.runner.run(['ln', '-sf', f"{OPT_DIR / spec.name}/bin/{binary}",
                                 f"{self.config.install_dir}/{binary}"])
        else:
            for binary in spec.binaries:
                self.runner.run(['install', '-m', '0755', f"<{source}>/{binary}",
                                 f"{self.config.install_dir}/{binary}"])
