# Copyright 2024 wyj
# Copyright 2025 Stephen Karl Larroque <lrq3000>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# Configuration loading
import logging
import os

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # Fallback for older versions

from archiver import DEFAULT_GROWTH_FACTOR, DEFAULT_MAP_SIZE, DEFAULT_TIMEOUT, DEFAULT_WORKERS, USER_AGENT

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "default_config.toml"
DATA_DIR_ENV = "PAGESHELF_DIR"
DATABASE_NAME = "pageshelf.db"


def load_config(config_path=DEFAULT_CONFIG_PATH):
    """
    Load configuration from TOML file.

    Parameters:
        config_path (str): Path to the TOML configuration file.

    Returns:
        dict: Configuration dictionary, empty when the file is missing or broken.
    """
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        logger.warning(f"Configuration file '{config_path}' not found. Using default values.")
        return {}
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Error loading configuration from '{config_path}': {e}. Using default values.")
        return {}


class Settings:
    """
    Effective settings: defaults, overridden by the TOML file, overridden by
    the PAGESHELF_DIR environment variable for the data directory.
    Command-line flags are applied on top by the caller.
    """

    def __init__(self, config_data=None, environ=None):
        if config_data is None:
            config_data = {}
        if environ is None:
            environ = os.environ

        storage = config_data.get("storage", {})
        self.data_dir = environ.get(DATA_DIR_ENV) or storage.get("data_dir", "./pageshelf-data")

        archive = config_data.get("archive", {})
        self.archive_workers = archive.get("workers", DEFAULT_WORKERS)
        self.archive_timeout = archive.get("timeout", DEFAULT_TIMEOUT)
        self.insecure = archive.get("insecure", False)
        self.map_size = archive.get("map_size", DEFAULT_MAP_SIZE)
        self.growth_factor = archive.get("growth_factor", DEFAULT_GROWTH_FACTOR)
        self.user_agent = archive.get("user_agent", USER_AGENT)

        fetch = config_data.get("fetch", {})
        self.page_timeout = fetch.get("page_timeout", 20)
        self.image_timeout = fetch.get("image_timeout", 10)
        self.retries = fetch.get("retries", 3)
        self.backoff_factor = fetch.get("backoff_factor", 0.5)

        readability = config_data.get("readability", {})
        self.char_threshold = readability.get("char_threshold", 500)
        self.n_top_candidates = readability.get("n_top_candidates", 5)
        self.keep_classes = readability.get("keep_classes", False)

        server = config_data.get("server", {})
        self.host = server.get("host", "127.0.0.1")
        self.port = server.get("port", 8080)

        log = config_data.get("logging", {})
        self.log_level = str(log.get("level", "INFO")).upper()
        self.log_file = log.get("file") or None

    @property
    def db_path(self):
        return os.path.join(self.data_dir, DATABASE_NAME)

    def readability_options(self):
        return {
            "char_threshold": self.char_threshold,
            "n_top_candidates": self.n_top_candidates,
            "keep_classes": self.keep_classes,
        }

    def archive_options(self):
        return {
            "workers": self.archive_workers,
            "timeout": self.archive_timeout,
            "insecure": self.insecure,
            "map_size": self.map_size,
            "growth_factor": self.growth_factor,
        }


def load_settings(config_path=DEFAULT_CONFIG_PATH, environ=None):
    return Settings(load_config(config_path), environ=environ)
