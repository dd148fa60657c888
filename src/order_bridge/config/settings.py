"""Configuration management using Pydantic Settings.

Loads configuration from environment variables with .env file support.
"""

from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings

from order_bridge.core.errors import ConfigurationError


class Settings(BaseSettings):
    """Application configuration."""

    # Rithum (source) API Configuration
    rithum_api_url: str = "https://api.dsco.io/api/v3"
    rithum_client_id: Optional[str] = None
    rithum_client_secret: Optional[str] = None

    # ShipStation (downstream) API Configuration
    shipstation_api_key: Optional[str] = None
    shipstation_base_url: str = "https://api.shipstation.com"
    shipstation_warehouse_id: Optional[str] = None

    # Ship-from address (optional, used instead of a warehouse)
    shipstation_ship_from_name: Optional[str] = None
    shipstation_ship_from_company: Optional[str] = None
    shipstation_ship_from_address1: Optional[str] = None
    shipstation_ship_from_address2: Optional[str] = None
    shipstation_ship_from_city: Optional[str] = None
    shipstation_ship_from_state: Optional[str] = None
    shipstation_ship_from_postal: Optional[str] = None
    shipstation_ship_from_country: str = "US"
    shipstation_ship_from_phone: Optional[str] = None

    # Polling Configuration
    skip_test_orders: bool = False
    poll_interval_minutes: int = 60
    poll_on_startup: bool = False
    scheduler_enabled: bool = True

    # State files
    stream_config_file: str = ".stream-config.json"
    tracking_file: str = "shipped_orders_tracking.json"
    sku_weights_file: Optional[str] = "sku-weights.json"

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    environment: str = "development"

    # GlitchTip Error Monitoring
    glitchtip_dsn: Optional[str] = None

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    @property
    def ship_from(self) -> Optional[Dict[str, Any]]:
        """Ship-from address in ShipStation v2 format, or None if not configured."""
        if not (self.shipstation_ship_from_address1 and self.shipstation_ship_from_city):
            return None

        address = {
            "name": self.shipstation_ship_from_name or self.shipstation_ship_from_company or "Ship From",
            "company_name": self.shipstation_ship_from_company or self.shipstation_ship_from_name,
            "address_line1": self.shipstation_ship_from_address1,
            "city_locality": self.shipstation_ship_from_city,
            "state_province": self.shipstation_ship_from_state or "",
            "postal_code": self.shipstation_ship_from_postal or "",
            "country_code": self.shipstation_ship_from_country,
            "phone": self.shipstation_ship_from_phone or "",
            "address_residential_indicator": "no",
        }
        if self.shipstation_ship_from_address2:
            address["address_line2"] = self.shipstation_ship_from_address2
        return address

    def validate_rithum(self) -> None:
        """Raise ConfigurationError if Rithum credentials are missing."""
        missing = [
            name for name, value in (
                ("RITHUM_CLIENT_ID", self.rithum_client_id),
                ("RITHUM_CLIENT_SECRET", self.rithum_client_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing Rithum configuration: {', '.join(missing)}")

    def validate_shipstation(self) -> None:
        """Raise ConfigurationError if the ShipStation API key is missing."""
        if not self.shipstation_api_key:
            raise ConfigurationError("Missing ShipStation configuration: SHIPSTATION_API_KEY")


# Create a global settings instance
settings = Settings()
