"""
Loads the GitLab connection settings.

The config file is plain INI with a [gitlab] section:

    [gitlab]
    TOKEN = glpat-...
    URL = https://gitlab.example.com

GITLAB_TOKEN / GITLAB_URL in the environment win over the file, which
makes container deployments easier.
"""

from __future__ import annotations

import configparser
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from gitlab_exporter.exceptions import ConfigError

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "./config.ini"
SECTION = "gitlab"


@dataclass(frozen=True)
class GitLabConfig:
    token: str
    url: str

    def __repr__(self) -> str:
        # keep the token out of logs
        return f"GitLabConfig(url={self.url!r}, token=***)"


def load_config(
    path: Optional[str] = DEFAULT_CONFIG_PATH,
    environ: Optional[Mapping[str, str]] = None,
) -> GitLabConfig:
    environ = os.environ if environ is None else environ
    parser = configparser.ConfigParser()

    if path and Path(path).is_file():
        try:
            parser.read(path)
        except configparser.Error as e:
            raise ConfigError(f"Failed to load config file {path}: {e}") from e
    elif path:
        log.warning("Config file %s not found, relying on environment", path)

    # configparser lowercases keys, so TOKEN and token both land here
    token = environ.get("GITLAB_TOKEN") or parser.get(SECTION, "token", fallback="")
    url = environ.get("GITLAB_URL") or parser.get(SECTION, "url", fallback="")

    missing = [name for name, value in (("TOKEN", token), ("URL", url)) if not value]
    if missing:
        raise ConfigError(f"Missing GitLab setting(s): {', '.join(missing)}")

    return GitLabConfig(token=token.strip(), url=url.strip())
