"""
Configuration loader for MQTT Stress.
Loads YAML configuration files and provides access to broker settings and run profiles.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, List
import logging

logger = logging.getLogger(__name__)


class ConfigLoader:
    """Load and manage configuration from YAML files."""

    def __init__(self, config_file: str):
        """
        Initialize the config loader.

        Args:
            config_file: Path to the YAML configuration file
        """
        self.config_file = Path(config_file)
        self.config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load the configuration file."""
        if not self.config_file.exists():
            raise FileNotFoundError(
                f"Config file not found: {self.config_file}\n"
                f"Use mqtt-stress.example.yaml as a template"
            )

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                self.config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file: {e}") from e

        if not isinstance(self.config, dict):
            raise ValueError(f"Config file {self.config_file} must contain a mapping at the top level")
        logger.info(f"Loaded configuration from {self.config_file}")

    def get_profile(self, profile_name: str) -> Dict[str, Any]:
        """
        Get a run profile merged over the `test` defaults section.

        Raises:
            ValueError: If profile not found
        """
        profiles = self.config.get('profiles') or {}

        if profile_name not in profiles:
            available = ', '.join(profiles.keys()) or 'none'
            raise ValueError(
                f"Profile '{profile_name}' not found in config.\n"
                f"Available profiles: {available}"
            )

        defaults = self.config.get('test') or {}
        merged = {**defaults, **(profiles[profile_name] or {})}

        logger.info(f"Loaded profile: {profile_name}")
        if 'description' in merged:
            logger.info(f"  Description: {merged['description']}")

        return merged

    def get_test_defaults(self) -> Dict[str, Any]:
        """Get the `test` section used when no profile is selected."""
        return dict(self.config.get('test') or {})

    def list_profiles(self) -> List[str]:
        return list((self.config.get('profiles') or {}).keys())

    def get_profile_info(self, profile_name: str) -> str:
        """
        Get human-readable information about a profile.

        Raises:
            ValueError: If profile not found
        """
        profile = self.get_profile(profile_name)

        info = [f"Profile: {profile_name}"]
        if 'description' in profile:
            info.append(f"  Description: {profile['description']}")
        info.append(f"  Workers: {profile.get('workers', 'N/A')}")
        info.append(f"  Delay: {profile.get('delay', 'N/A')}")
        info.append(f"  Run: {profile.get('run', 'N/A')}")
        if profile.get('increment'):
            info.append("  Payload: incrementing counter")
        elif profile.get('fields'):
            info.append(f"  Payload fields: {profile['fields']}")
        elif profile.get('payload'):
            info.append(f"  Payload: {profile['payload']}")
        return '\n'.join(info)

    def get_broker_config(self) -> Dict[str, Any]:
        """Get the `broker` section (url, credentials, connection options)."""
        return dict(self.config.get('broker') or {})

    def print_summary(self) -> None:
        """Print a summary of the loaded configuration."""
        print("=" * 60)
        print("MQTT Stress Configuration")
        print("=" * 60)

        broker = self.get_broker_config()
        print(f"Broker: {broker.get('url', 'N/A')}")

        profiles = self.list_profiles()
        print(f"\nAvailable Profiles ({len(profiles)}):")
        for profile_name in sorted(profiles):
            profile_config = self.config['profiles'][profile_name] or {}
            desc = profile_config.get('description', 'No description')
            print(f"  - {profile_name:20s} : {desc}")

        print("=" * 60)
