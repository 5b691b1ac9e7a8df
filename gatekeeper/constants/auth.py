"""
Authentication Constants

Configuration constants for JWT authentication.
"""

import logging

from decouple import config

logger = logging.getLogger(__name__)

# JWT Configuration
SECRET_KEY = config("SECRET_KEY", default="your_secret_key")
if SECRET_KEY == "your_secret_key":
    logger.warning("Using default SECRET_KEY. This is insecure and should be changed in production!")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = config("ACCESS_TOKEN_EXPIRE_MINUTES", default=30, cast=int)

# Cookie / header names used by the login flow
ACCESS_TOKEN_COOKIE = "access_token"
DEVICE_TOKEN_COOKIE = "device_token"
DEVICE_TOKEN_HEADER = "X-Device-Token"
