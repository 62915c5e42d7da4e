"""
API Routes Package
"""
from . import (
    health,
    queue,
    webhooks,
)
