"""
Configuration management for the cart/wishlist sync service.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
import boto3
from typing import Optional

logger = logging.getLogger(__name__)


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "cartsync")
    REGION: str = os.getenv("REGION", "ap-southeast-2")

    # Storefront REST API
    API_URL: str = os.getenv("API_URL", "http://localhost:5000")
    API_TIMEOUT_SECONDS: float = float(os.getenv("API_TIMEOUT_SECONDS", "10"))

    # Guest storage keys (one per container, plus the bearer token)
    GUEST_CART_KEY: str = "guest-cart"
    GUEST_WISHLIST_KEY: str = "wishlist"
    TOKEN_KEY: str = "token"
    GUEST_CART_ID: str = "guest-cart"

    # Guest cart settings
    GUEST_STORAGE_TTL_SECONDS: int = int(os.getenv("GUEST_STORAGE_TTL_SECONDS", str(30 * 24 * 60 * 60)))  # 30 days
    MAX_ITEMS_PER_CART: int = int(os.getenv("MAX_ITEMS_PER_CART", "200"))
    MAX_QUANTITY_PER_ITEM: int = int(os.getenv("MAX_QUANTITY_PER_ITEM", "99"))
    MAX_NOTIFICATIONS: int = int(os.getenv("MAX_NOTIFICATIONS", "50"))

    # Redis settings
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SSL: bool = os.getenv("REDIS_SSL", "false").lower() in ("1", "true", "yes")

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 50

    # Catalog database (admin identifier resolution)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./catalog.db")

    @classmethod
    def redis_url(cls) -> str:
        """Build the Redis connection URL"""
        scheme = "rediss" if cls.REDIS_SSL else "redis"
        auth = f":{cls.REDIS_AUTH_TOKEN}@" if cls.REDIS_AUTH_TOKEN else ""
        return f"{scheme}://{auth}{cls.REDIS_HOST}:{cls.REDIS_PORT}/{cls.REDIS_DB}"

    @classmethod
    def load_redis_secrets(cls) -> None:
        """Load Redis authentication token from AWS Secrets Manager"""
        if cls.REDIS_AUTH_TOKEN:
            return  # Already loaded from environment

        secret_name = os.getenv("REDIS_SECRET_NAME")
        if not secret_name:
            return  # No secret name provided, use no auth

        try:
            client = boto3.client("secretsmanager", region_name=cls.REGION)
            response = client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response["SecretString"])

            cls.REDIS_AUTH_TOKEN = secret_data.get("auth_token")
            if "endpoint" in secret_data:
                cls.REDIS_HOST = secret_data["endpoint"]
            cls.REDIS_SSL = True  # ElastiCache with an auth token requires TLS
        except Exception as e:
            logger.warning(f"Could not load Redis secrets from Secrets Manager: {e}")
            # Continue without auth token (may fail on connection)


# Load secrets at module import
Config.load_redis_secrets()
