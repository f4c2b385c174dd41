"""Resolve where repocrypt keeps its keys and how it reaches the API.

Values are looked up in this order: explicit arguments (command line
flags), ``REPOCRYPT_*`` environment variables, the user's configuration
file ``<profile>/config.cfg``, built-in defaults.

"""

import os
import os.path
from configparser import Error, RawConfigParser
from typing import Optional

from repocrypt import ConfigurationError

PROFILE_DIR = "~/.repocrypt"
CONFIG_FILE_NAME = "config.cfg"
KEY_FILE_NAME = "key"
IDENTITY_FILE_NAME = "identity"


class ConfigFile(object):
    def __init__(self, path):
        config = RawConfigParser()
        config.optionxform = lambda optionstr: optionstr
        if path:  # Test support
            try:
                config.read(path)
            except Error as e:
                raise ConfigurationError.from_context(path, str(e))
        self.config = config

    def __contains__(self, section):
        return self.config.has_section(section)

    def __getitem__(self, section):
        if section not in self:
            raise KeyError(section)
        return dict(
            (x, self.config.get(section, x))
            for x in self.config.options(section)
        )

    def get(self, section, default=None):
        try:
            return self[section]
        except KeyError:
            return default


class Config(object):
    """Settings threaded into the key store, identity store and API client."""

    def __init__(
        self,
        profile_dir: str,
        key_file: Optional[str] = None,
        api_endpoint: Optional[str] = None,
        api_token: Optional[str] = None,
    ):
        self.profile_dir = profile_dir
        self._key_file = key_file
        self.api_endpoint = api_endpoint
        self.api_token = api_token

    @property
    def key_file(self) -> str:
        if self._key_file:
            return os.path.expanduser(self._key_file)
        return os.path.join(self.profile_dir, KEY_FILE_NAME)

    @property
    def identity_file(self) -> str:
        return os.path.join(self.profile_dir, IDENTITY_FILE_NAME)

    @classmethod
    def load(cls, key_file=None, environ=None):
        if environ is None:
            environ = os.environ
        profile_dir = os.path.expanduser(
            environ.get("REPOCRYPT_HOME") or PROFILE_DIR
        )
        config = ConfigFile(os.path.join(profile_dir, CONFIG_FILE_NAME))
        settings = config.get("repocrypt", {})
        api = config.get("api", {})
        return cls(
            profile_dir,
            key_file=(
                key_file
                or environ.get("REPOCRYPT_ENCRYPTION_KEY_FILE")
                or settings.get("key_file")
            ),
            api_endpoint=(
                environ.get("REPOCRYPT_API_ENDPOINT") or api.get("endpoint")
            ),
            api_token=environ.get("REPOCRYPT_TOKEN") or api.get("token"),
        )
