import os
import yaml
import keyring

APP_VERSION = "1.0.0"


class YamlConfig:
    """Load and save settings to a YAML file.

    Sensitive values go to the OS keyring when ``ENCRYPT_SETTINGS=1`` and can
    be supplied through ``MUSCLEGROW_<KEY>`` environment variables, which take
    precedence over the file.
    """

    SENSITIVE_KEYS = {
        "identity_provider_secret",
    }
    ENV_PREFIX = "MUSCLEGROW_"

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path
        self.encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"
        self.service = "musclegrow"

    def _env_overrides(self) -> dict:
        overrides = {}
        for key in self.SENSITIVE_KEYS:
            value = os.environ.get(f"{self.ENV_PREFIX}{key.upper()}")
            if value:
                overrides[key] = value
        return overrides

    def load(self) -> dict:
        data: dict = {}
        if os.path.exists(self.path):
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        if self.encrypt:
            for key in list(data.keys()):
                if key not in self.SENSITIVE_KEYS:
                    continue
                secret = keyring.get_password(self.service, key)
                if secret is not None:
                    data[key] = secret
                else:
                    data.pop(key, None)
        data.update(self._env_overrides())
        return data

    def save(self, data: dict) -> None:
        out = {k: v for k, v in data.items() if k not in self._env_overrides()}
        if self.encrypt:
            for key in self.SENSITIVE_KEYS:
                if key in out:
                    keyring.set_password(self.service, key, str(out[key]))
                    out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)
