import os
import yaml
import logging
from typing import Dict, Optional
from dotenv import load_dotenv
from azure.appconfiguration import AzureAppConfigurationClient
from azure.identity import DefaultAzureCredential
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from .models import AppConfig

# AppConfig field -> environment variable (lowercased, the App Configuration key)
REQUIRED_SETTINGS = {
    "username": "OTF_USERNAME",
    "password": "OTF_PASSWORD",
    "client_id": "OTF_CLIENT_ID",
    "io_base_url": "OTF_API_IO_BASE_URL",
    "co_base_url": "OTF_API_CO_BASE_URL",
    "auth_url": "OTF_AUTH_URL",
}

OPTIONAL_SETTINGS = {
    "booking_class_id_field": "OTF_BOOKING_CLASS_ID_FIELD",
    "timeout": "OTF_HTTP_TIMEOUT",
    "token_ttl": "OTF_TOKEN_TTL",
}

class ConfigLoader:
    def __init__(self, local_config_path: str = "config.yaml", env_file: Optional[str] = ".env"):
        if env_file:
            load_dotenv(env_file)
        self.endpoint = os.getenv("AZURE_APP_CONFIG_ENDPOINT")
        self.local_config_path = local_config_path

    def load(self) -> AppConfig:
        if self.endpoint:
            logging.info(f"Loading configuration from Azure App Configuration endpoint: {self.endpoint}")
            return self._load_from_azure()
        elif os.path.exists(self.local_config_path):
            logging.info(f"Loading configuration from {self.local_config_path}.")
            return self._load_from_local()
        else:
            logging.info("Loading configuration from environment variables.")
            return self._load_from_env()

    def _load_from_env(self) -> AppConfig:
        values = {}
        for field, env_var in {**REQUIRED_SETTINGS, **OPTIONAL_SETTINGS}.items():
            value = os.getenv(env_var)
            if value:
                values[field] = value
        return self._build(values, source="environment")

    def _load_from_local(self) -> AppConfig:
        with open(self.local_config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{self.local_config_path} must contain a mapping of settings.")

        values = {key: self._substitute_env(value) for key, value in data.items()}
        return self._build(values, source=self.local_config_path)

    def _load_from_azure(self) -> AppConfig:
        credential = DefaultAzureCredential()
        client = AzureAppConfigurationClient(base_url=self.endpoint, credential=credential)

        values = {}
        try:
            for field, env_var in REQUIRED_SETTINGS.items():
                values[field] = client.get_configuration_setting(key=env_var.lower()).value
            for field, env_var in OPTIONAL_SETTINGS.items():
                try:
                    values[field] = client.get_configuration_setting(key=env_var.lower()).value
                except ResourceNotFoundError:
                    continue
        except HttpResponseError as e:
            logging.error(f"Azure App Configuration error (Status: {e.status_code}): {e.message}")
            if e.status_code == 403:
                logging.error("Check that the identity has 'App Configuration Data Reader' role and Networking allows access.")
            raise

        values = {key: self._substitute_env(value) for key, value in values.items()}
        return self._build(values, source="Azure App Configuration")

    def _build(self, values: Dict[str, str], source: str) -> AppConfig:
        missing = [REQUIRED_SETTINGS[field] for field in REQUIRED_SETTINGS if not values.get(field)]
        if missing:
            raise ValueError(f"Missing required configuration in {source}: {', '.join(missing)}")
        return AppConfig(**{key: value for key, value in values.items() if value is not None})

    def _substitute_env(self, value):
        if not value or not isinstance(value, str):
            return value

        value = value.strip().strip("'").strip('"')
        if value.startswith("${") and value.endswith("}"):
            env_var = value[2:-1]
            result = os.getenv(env_var)
            if result is None:
                logging.warning(f"Environment variable '{env_var}' not found.")
                return None
            return result
        return value
