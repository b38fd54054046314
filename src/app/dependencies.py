# src/app/dependencies.py
from .config import Settings, get_settings


def get_app_settings() -> Settings:
    return get_settings()
